"""Reading scores from disk or over HTTP.

Scores arrive as uncompressed MusicXML (``.xml``/``.musicxml``) or as a
compressed ``.mxl`` archive, a zip file whose ``META-INF/container.xml``
names the score inside it. Both end up as XML text via :func:`decode_markup`.

```python
name, data = scorelight.fetch.fetch_score("https://example.com/minuet.mxl")
markup = scorelight.fetch.decode_markup(name, data)
```
"""

import io
import logging
import os
import posixpath
import typing
import urllib.parse
import xml.etree.ElementTree
import zipfile

import requests

import scorelight.errors


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT = 15.0
DEFAULT_NAME = "score.musicxml"

CONTAINER_PATH = "META-INF/container.xml"
COMPRESSED_SUFFIX = ".mxl"
ZIP_MAGIC = b"PK\x03\x04"
XML_SUFFIXES = (".xml", ".musicxml")


def is_url (source: str) -> bool:

	"""True when ``source`` is an http(s) URL rather than a file path."""

	return urllib.parse.urlparse(source).scheme in ("http", "https")


def fetch_score (url: str, timeout: float = DEFAULT_TIMEOUT) -> typing.Tuple[str, bytes]:

	"""Download a score.

	Returns:
		``(name, data)`` where ``name`` is the last path segment of the URL.

	Raises:
		scorelight.errors.ScoreFetchError: Network error, timeout or a non-2xx
			response.
	"""

	logger.info(f"Fetching score from {url}")

	try:
		response = requests.get(url, timeout=timeout)
		response.raise_for_status()
	except requests.RequestException as exc:
		raise scorelight.errors.ScoreFetchError(f"Could not fetch {url}: {exc}") from exc

	name = posixpath.basename(urllib.parse.urlparse(url).path) or DEFAULT_NAME

	return name, response.content


def read_score_file (path: str) -> typing.Tuple[str, bytes]:

	"""Read a score from disk.

	Raises:
		scorelight.errors.ScoreFetchError: The file cannot be read.
	"""

	try:
		with open(path, 'rb') as f:
			data = f.read()
	except OSError as exc:
		raise scorelight.errors.ScoreFetchError(f"Could not read {path}: {exc}") from exc

	return os.path.basename(path), data


def is_compressed (name: str, data: bytes) -> bool:
	return name.lower().endswith(COMPRESSED_SUFFIX) or data.startswith(ZIP_MAGIC)


def _container_root_file (archive: zipfile.ZipFile) -> typing.Optional[str]:

	"""Path of the first ``<rootfile>`` listed in the archive's container, if any."""

	try:
		container = xml.etree.ElementTree.fromstring(archive.read(CONTAINER_PATH))
	except KeyError:
		return None
	except xml.etree.ElementTree.ParseError:
		logger.warning(f"Ignoring malformed {CONTAINER_PATH}")
		return None

	for element in container.iter():
		if element.tag.endswith("rootfile") and element.get("full-path"):
			return element.get("full-path")

	return None


def unpack_mxl (data: bytes) -> bytes:

	"""Extract the score from a compressed ``.mxl`` archive.

	The container's root file is used; archives without a usable container
	fall back to the first XML file outside ``META-INF/``.

	Raises:
		scorelight.errors.ScoreParseError: Not a zip archive, or no score inside.
	"""

	try:
		with zipfile.ZipFile(io.BytesIO(data)) as archive:

			path = _container_root_file(archive)

			if path is None:
				candidates = [
					name for name in archive.namelist()
					if not name.startswith("META-INF/") and name.lower().endswith(XML_SUFFIXES)
				]
				path = candidates[0] if candidates else None

			if path is None:
				raise scorelight.errors.ScoreParseError("Compressed score contains no MusicXML file")

			logger.debug(f"Reading {path} from compressed score")

			return archive.read(path)

	except zipfile.BadZipFile as exc:
		raise scorelight.errors.ScoreParseError(f"Not a valid .mxl archive: {exc}") from exc
	except KeyError as exc:
		raise scorelight.errors.ScoreParseError(f"Compressed score is missing {exc}") from exc


def decode_markup (name: str, data: bytes) -> str:

	"""Turn raw score bytes (plain or compressed) into XML text.

	Raises:
		scorelight.errors.ScoreParseError: The archive is unusable or the
			text cannot be decoded.
	"""

	if is_compressed(name, data):
		data = unpack_mxl(data)

	encoding = "utf-16" if data[:2] in (b"\xff\xfe", b"\xfe\xff") else "utf-8-sig"

	try:
		return data.decode(encoding)
	except UnicodeDecodeError as exc:
		raise scorelight.errors.ScoreParseError(f"{name} is not valid {encoding} text: {exc}") from exc


def load_source (source: str, timeout: float = DEFAULT_TIMEOUT) -> typing.Tuple[str, str]:

	"""Read a file path or URL and return ``(name, xml_text)``."""

	if is_url(source):
		name, data = fetch_score(source, timeout=timeout)
	else:
		name, data = read_score_file(source)

	return name, decode_markup(name, data)
