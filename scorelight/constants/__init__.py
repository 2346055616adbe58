"""Constants for scorelight.

- ``scorelight.constants.durations`` - Beat values of MusicXML note types
- ``scorelight.constants.velocity`` - MIDI velocity defaults for playback and manual keys
- ``scorelight.constants.keyboard`` - Keyboard layout and display-window defaults
"""
