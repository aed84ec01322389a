"""Corpus loading and word-window chunking."""

import json
import math
import re
from collections import defaultdict
from pathlib import Path

import pypdf
from pypdf.errors import PyPdfError

from .config import config
from .errors import InvalidSettingValue
from .models import Chunk, ChunkMetadata, SourceDocument, SourceType

logger = config.get_logger(__name__)

SENTENCE_PATTERN = re.compile(r"[^.!?]*[.!?]+|[^.!?]+")


class DocumentLoader:
    """Handles loading of PDF, TXT and Markdown documents."""

    @staticmethod
    def load_pdf(file_path: Path) -> str:
        """Load text content from a PDF file.

        Returns:
            The extracted text of all pages joined by spaces.
        """
        try:
            with file_path.open("rb") as file:
                pdf_reader = pypdf.PdfReader(file)
                pages = [page.extract_text() or "" for page in pdf_reader.pages]
        except Exception:
            logger.exception("Error loading PDF %s", file_path)
            raise
        else:
            return " ".join(pages).strip()

    @staticmethod
    def load_txt(file_path: Path) -> str:
        """Load text content from a plain text or Markdown file.

        Returns:
            The file content as a string.
        """
        try:
            with file_path.open(encoding="utf-8") as file:
                text = file.read()
        except Exception:
            logger.exception("Error loading text file %s", file_path)
            raise
        else:
            return text

    @classmethod
    def load_document(cls, file_path: Path) -> str:
        """Load document based on file extension.

        Args:
            file_path: Path to the document file.

        Returns:
            The text content of the document as a string.

        Raises:
            ValueError: If the file type is not supported.
        """
        file_ext = file_path.suffix.lower()
        if file_ext == ".pdf":
            return cls.load_pdf(file_path)
        if file_ext in {".txt", ".md"}:
            return cls.load_txt(file_path)
        msg = f"Unsupported file type: {file_ext}"
        raise ValueError(msg)


class CorpusLoader:
    """Reads every source under a corpus directory.

    Layout::

        <corpus>/documents/*.pdf|*.txt   -> document
        <corpus>/articles/*.md|*.txt     -> article
        <corpus>/chat_logs/*.json        -> chat-log, grouped by channel

    Each sub-directory is optional. A single unreadable file is logged and
    skipped; a missing corpus root aborts the load.
    """

    def __init__(self, corpus_dir: Path | None = None) -> None:
        if corpus_dir is None:
            corpus_dir = config.CORPUS_DIR
        self.corpus_dir = Path(corpus_dir)

    def load(self) -> list[SourceDocument]:
        """Load all sources.

        Returns:
            Sources in a deterministic order: documents, articles, chat logs.

        Raises:
            FileNotFoundError: If the corpus directory does not exist.
        """
        if not self.corpus_dir.is_dir():
            msg = f"Corpus directory not found: {self.corpus_dir}"
            raise FileNotFoundError(msg)

        sources = [
            *self.load_documents(),
            *self.load_articles(),
            *self.load_chat_logs(),
        ]
        logger.info("Loaded %d sources from %s", len(sources), self.corpus_dir)
        return sources

    def _files(self, subdir: str, suffixes: set[str]) -> list[Path]:
        directory = self.corpus_dir / subdir
        if not directory.is_dir():
            return []
        return sorted(
            path
            for path in directory.iterdir()
            if path.is_file() and path.suffix.lower() in suffixes
        )

    def load_documents(self) -> list[SourceDocument]:
        documents = []
        for path in self._files("documents", {".pdf", ".txt"}):
            try:
                text = DocumentLoader.load_document(path)
            except (OSError, ValueError, PyPdfError):
                logger.warning("Skipping unreadable document %s", path.name)
                continue
            documents.append(
                SourceDocument(
                    source_id=path.name,
                    source_type=SourceType.DOCUMENT,
                    name=path.name,
                    text=text,
                )
            )
        return documents

    def load_articles(self) -> list[SourceDocument]:
        articles = []
        for path in self._files("articles", {".md", ".txt"}):
            try:
                text = DocumentLoader.load_txt(path)
            except (OSError, UnicodeDecodeError):
                logger.warning("Skipping unreadable article %s", path.name)
                continue
            articles.append(
                SourceDocument(
                    source_id=path.stem,
                    source_type=SourceType.ARTICLE,
                    name=self._article_title(text) or path.stem,
                    text=text,
                )
            )
        return articles

    @staticmethod
    def _article_title(text: str) -> str:
        for line in text.splitlines():
            title = line.strip().lstrip("#").strip()
            if title:
                return title
        return ""

    def load_chat_logs(self) -> list[SourceDocument]:
        by_channel: dict[str, list[str]] = defaultdict(list)
        for path in self._files("chat_logs", {".json"}):
            try:
                entries = json.loads(DocumentLoader.load_txt(path))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError):
                logger.warning("Skipping malformed chat log %s", path.name)
                continue
            if not isinstance(entries, list):
                logger.warning("Skipping chat log %s: expected a JSON array", path.name)
                continue
            for entry in entries:
                if not isinstance(entry, dict):
                    continue
                channel, text = entry.get("channel"), entry.get("text")
                if isinstance(channel, str) and isinstance(text, str):
                    by_channel[channel].append(text)

        return [
            SourceDocument(
                source_id=channel,
                source_type=SourceType.CHAT_LOG,
                name=f"Chat #{channel}",
                text=" ".join(messages),
            )
            for channel, messages in by_channel.items()
        ]


class TextChunker:
    """Splits text into overlapping windows of words."""

    def __init__(
        self,
        chunk_size: int | None = None,
        overlap: int | None = None,
        min_chars: int | None = None,
    ) -> None:
        """Initialize the TextChunker with window size and overlap in words.

        Args:
            chunk_size: Words per chunk. If None, uses config.CHUNK_SIZE.
            overlap: Words shared by consecutive chunks. If None, uses
                config.CHUNK_OVERLAP.
            min_chars: Windows shorter than this after trimming are dropped.

        Raises:
            InvalidSettingValue: If overlap is not smaller than chunk_size.
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.overlap = config.CHUNK_OVERLAP if overlap is None else overlap
        self.min_chars = config.MIN_CHUNK_CHARS if min_chars is None else min_chars
        if self.chunk_size < 1 or not 0 <= self.overlap < self.chunk_size:
            msg = (
                f"Invalid chunk window: size={self.chunk_size}, overlap={self.overlap}"
            )
            raise InvalidSettingValue(msg)

    @property
    def step(self) -> int:
        return self.chunk_size - self.overlap

    @staticmethod
    def split_words(text: str) -> list[str]:
        """Flatten text into words, segmenting on sentence terminators first.

        Returns:
            Words in reading order. Text after the last terminator forms a
            final segment, so no input word is lost.
        """
        words: list[str] = []
        for segment in SENTENCE_PATTERN.findall(text):
            words.extend(segment.split())
        return words

    def chunk_text(
        self,
        text: str,
        source_id: str,
        source_type: SourceType = SourceType.DOCUMENT,
        source: str | None = None,
    ) -> list[Chunk]:
        """Split text into overlapping chunks.

        Returns:
            Chunks in emission order with zero-based chunk indexes.
        """
        words = self.split_words(text)
        expected_count = math.ceil(len(words) / self.step)
        metadata = ChunkMetadata(source=source or source_id, chunk_count=expected_count)

        chunks: list[Chunk] = []
        for start in range(0, len(words), self.step):
            content = " ".join(words[start : start + self.chunk_size]).strip()
            if len(content) < self.min_chars:
                continue
            chunks.append(
                Chunk(
                    content=content,
                    source_id=source_id,
                    source_type=source_type,
                    chunk_index=len(chunks),
                    metadata=metadata,
                )
            )

        logger.info(
            "Chunked %s \"%s\": %d chunks", source_type.value, metadata.source, len(chunks)
        )
        return chunks

    def chunk_document(self, document: SourceDocument) -> list[Chunk]:
        return self.chunk_text(
            document.text,
            source_id=document.source_id,
            source_type=document.source_type,
            source=document.name,
        )
