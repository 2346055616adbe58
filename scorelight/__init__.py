"""
scorelight - play MusicXML scores on a MIDI synth and light the keys.

scorelight reads a MusicXML score, turns it into a timeline of notes
measured in quarter-note beats, and plays it back at a tempo you can change
while it runs. Every note is sent to a MIDI output and, at the same moment,
the matching key of an external keyboard display is lit over OSC.

What it handles:

- **Real score structure.** Multiple parts and voices laid out with
  ``<backup>``/``<forward>``, chords, tied notes and tie chains,
  mid-measure ``<divisions>`` changes, and both partwise and timewise
  scores. Compressed ``.mxl`` files are unpacked.
- **Tempo.** The nominal tempo is read from ``<sound tempo>`` or the first
  metronome mark (dotted beat units included). The live tempo can differ
  and can change during playback; the pass resumes from the current beat.
- **Keyboard window.** The visible keyboard is fitted to the notes in whole
  octaves, or pinned to a configured range. A visual transpose moves the
  lights without changing the sound.
- **Clean cancellation.** Stop, tempo changes and loop restarts invalidate
  every pending command at once, so no stray note or lit key survives.

Minimal example:

    ```python
    import asyncio
    import scorelight

    player = scorelight.Player()
    asyncio.run(player.run("minuet.musicxml"))
    ```

Or from the command line: ``python -m scorelight minuet.musicxml``.

Package-level exports: ``Player``, ``PlayerConfig``, ``load_config``,
``extract_timeline``, ``detect_tempo``.
"""

import scorelight.config
import scorelight.musicxml
import scorelight.player
import scorelight.tempo


Player = scorelight.player.Player
PlayerConfig = scorelight.config.PlayerConfig
load_config = scorelight.config.load_config
extract_timeline = scorelight.musicxml.extract_timeline
detect_tempo = scorelight.tempo.detect_tempo
