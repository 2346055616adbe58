"""Exceptions raised while loading a score.

Every failure that aborts a load derives from :class:`ScoreLoadError`, so a
caller can surface a single user-visible message and keep the previously
installed timeline:

```python
try:
	player.load_url(url)
except scorelight.errors.ScoreLoadError as exc:
	print(f"Could not load score: {exc}")
```
"""


class ScoreLoadError (RuntimeError):

	"""A score could not be loaded; the previous state is left untouched."""


class ScoreParseError (ScoreLoadError):

	"""The markup is not well-formed XML or is not a MusicXML score."""


class ScoreFetchError (ScoreLoadError):

	"""A score could not be retrieved from a file or a remote URL."""
