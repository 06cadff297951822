"""
Archive Extractor

Opens a compressed upload in memory and locates the embedded structured
invoice document plus the optional companion rendering (usually a PDF).
Decompressed sizes are bounded so a corrupt or hostile archive cannot
exhaust memory.
"""

import io
import logging
import zipfile
import zlib
from dataclasses import dataclass
from typing import Any, List, Optional

from einvex.config.einvex_config import EinvexConfig
from einvex.exceptions import ExtractionError

logger = logging.getLogger(__name__)

XML_EXTENSIONS = ('.xml',)
RENDERING_EXTENSIONS = ('.pdf',)
PDF_MAGIC = b'%PDF'
READ_CHUNK = 64 * 1024


@dataclass
class RawBundle:
    """Raw payloads found in an upload. Discarded once parsed."""
    document: bytes
    rendering: Optional[bytes] = None
    document_name: Optional[str] = None
    rendering_name: Optional[str] = None

    @property
    def has_rendering(self) -> bool:
        return self.rendering is not None


def looks_like_xml(head: bytes) -> bool:
    """Content sniff for markup: optional BOM and whitespace, then '<'"""
    stripped = head.lstrip(b'\xef\xbb\xbf').lstrip()
    if stripped.startswith(b'\xff\xfe') or stripped.startswith(b'\xfe\xff'):
        # UTF-16 byte order mark
        return True
    return stripped.startswith(b'<')


class ArchiveExtractor:
    """
    Extracts the invoice document from a ZIP upload.

    Features:
    - Document selection by extension, falling back to content sniffing
    - Optional rendering artifact passed through untouched
    - Per-entry, total and entry-count limits enforced while reading
    """

    def __init__(self, config: Optional[EinvexConfig] = None):
        config = config or EinvexConfig()
        self.max_entry_bytes = int(config.get('archive.max_entry_bytes', 20 * 1024 * 1024))
        self.max_total_bytes = int(config.get('archive.max_total_bytes', 50 * 1024 * 1024))
        self.max_entries = int(config.get('archive.max_entries', 100))

    def extract(self, data: bytes) -> RawBundle:
        """
        Extract the document and optional rendering from an archive.

        Args:
            data: Raw bytes of the uploaded archive

        Returns:
            RawBundle with the document bytes

        Raises:
            ExtractionError: If the archive is unreadable, too large, or holds no XML document
        """
        if not data:
            raise ExtractionError("Uploaded file is empty")

        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as e:
            raise ExtractionError("Uploaded file is not a valid ZIP archive", {'reason': str(e)})

        with archive:
            entries = [
                info for info in archive.infolist()
                if not info.is_dir() and not self._is_metadata_entry(info.filename)
            ]
            if len(entries) > self.max_entries:
                raise ExtractionError(
                    "Archive has too many entries",
                    {'entries': len(entries), 'limit': self.max_entries}
                )
            logger.info(f"Opened archive with {len(entries)} entries")

            document_info = self._select_document(archive, entries)
            if document_info is None:
                raise ExtractionError(
                    "Archive contains no XML invoice document",
                    {'entries': [info.filename for info in entries]}
                )

            rendering_info = self._select_rendering(archive, entries, exclude=document_info)
            remaining = self.max_total_bytes
            document = self._read_entry(archive, document_info, remaining)
            remaining -= len(document)
            rendering = (
                self._read_entry(archive, rendering_info, remaining) if rendering_info else None
            )

        logger.debug(
            f"Selected document {document_info.filename} ({len(document)} bytes), "
            f"rendering: {rendering_info.filename if rendering_info else None}"
        )
        return RawBundle(
            document=document,
            rendering=rendering,
            document_name=document_info.filename,
            rendering_name=rendering_info.filename if rendering_info else None
        )

    def _is_metadata_entry(self, name: str) -> bool:
        base = name.replace('\\', '/').split('/')[-1]
        return name.startswith('__MACOSX/') or base.startswith('._') or base in ('.DS_Store', 'Thumbs.db')

    def _select_document(self, archive: zipfile.ZipFile, entries: List[zipfile.ZipInfo]) -> Optional[zipfile.ZipInfo]:
        by_extension = [i for i in entries if i.filename.lower().endswith(XML_EXTENSIONS)]
        if by_extension:
            if len(by_extension) > 1:
                logger.warning(
                    f"Archive has {len(by_extension)} XML entries, using {by_extension[0].filename}"
                )
            return by_extension[0]

        for info in entries:
            if info.filename.lower().endswith(RENDERING_EXTENSIONS):
                continue
            head = self._peek(archive, info)
            if looks_like_xml(head):
                logger.debug(f"Entry {info.filename} recognized as XML by content")
                return info
        return None

    def _select_rendering(
        self,
        archive: zipfile.ZipFile,
        entries: List[zipfile.ZipInfo],
        exclude: zipfile.ZipInfo
    ) -> Optional[zipfile.ZipInfo]:
        candidates = [i for i in entries if i is not exclude]
        for info in candidates:
            if info.filename.lower().endswith(RENDERING_EXTENSIONS):
                return info
        for info in candidates:
            if self._peek(archive, info).startswith(PDF_MAGIC):
                return info
        return None

    def _peek(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo, size: int = 512) -> bytes:
        try:
            with archive.open(info) as fh:
                return fh.read(size)
        except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError) as e:
            logger.debug(f"Could not peek into {info.filename}: {e}")
            return b''

    def _read_entry(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo, remaining: int) -> bytes:
        """
        Read one entry in chunks, stopping as soon as a size limit is crossed.

        ``remaining`` is what is left of the total budget for this extraction.
        """
        limit = min(self.max_entry_bytes, remaining)
        if info.file_size > limit:
            raise ExtractionError(
                "Archive entry exceeds the size limit",
                {'entry': info.filename, 'size': info.file_size, 'limit': limit}
            )

        buffer = io.BytesIO()
        read = 0
        try:
            with archive.open(info) as fh:
                while True:
                    chunk = fh.read(READ_CHUNK)
                    if not chunk:
                        break
                    read += len(chunk)
                    # Declared sizes can lie, so the real byte count is what counts
                    if read > limit:
                        raise ExtractionError(
                            "Archive entry exceeds the size limit",
                            {'entry': info.filename, 'limit': limit}
                        )
                    buffer.write(chunk)
        except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError, EOFError) as e:
            # RuntimeError covers encrypted entries
            raise ExtractionError(f"Could not read archive entry {info.filename}", {'reason': str(e)})

        return buffer.getvalue()


def extract_bundle(data: bytes, config: Any = None) -> RawBundle:
    """Convenience wrapper around ArchiveExtractor.extract"""
    return ArchiveExtractor(config).extract(data)
