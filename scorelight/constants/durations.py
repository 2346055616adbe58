"""Beat values of MusicXML note types.

All values are in **beats**, where 1.0 = one quarter note. The timeline is
measured in these units, and metronome marks are converted to quarter notes
per minute with them::

	import scorelight.constants.durations as dur

	# "dotted quarter = 60" is 90 quarter notes per minute
	qpm = 60 * dur.QUARTER * 1.5
"""

SIXTYFOURTH = 0.0625
THIRTYSECOND = 0.125
SIXTEENTH = 0.25
EIGHTH = 0.5
QUARTER = 1.0
HALF = 2.0
WHOLE = 4.0

# MusicXML <beat-unit> / <type> names. "8th" is accepted as an alias of "eighth".
BEAT_UNITS = {
	"whole": WHOLE,
	"half": HALF,
	"quarter": QUARTER,
	"eighth": EIGHTH,
	"8th": EIGHTH,
	"16th": SIXTEENTH,
	"32nd": THIRTYSECOND,
	"64th": SIXTYFOURTH,
}
