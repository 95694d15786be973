"""Sentence-aware text chunker measured in model tokens (tiktoken)."""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import tiktoken

from ..config import Settings

ENCODING_NAME = "cl100k_base"

_SENTENCE = re.compile(r"[^.!?;]+[.!?;]+|[^.!?;]+$")


@lru_cache(maxsize=4)
def get_encoder(name: str = ENCODING_NAME):
    return tiktoken.get_encoding(name)


def count_tokens(text: str, encoder=None) -> int:
    """Number of tokens in text under the given encoder (cl100k_base by default)."""
    if not text:
        return 0
    encoder = encoder or get_encoder()
    return len(encoder.encode(text))


def split_sentences(text: str) -> list[str]:
    if not text:
        return []
    normalized = re.sub(r"[ \t]+", " ", text.replace("\r\n", "\n")).strip()
    return [part.strip() for part in _SENTENCE.findall(normalized) if part.strip()]


@dataclass
class ChunkerConfig:
    chunk_tokens: int = 800
    overlap_tokens: int = 200
    encoding: str = ENCODING_NAME

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChunkerConfig":
        return cls(
            chunk_tokens=settings.RAG_CHUNK_TOKENS,
            overlap_tokens=settings.RAG_CHUNK_OVERLAP,
            encoding=settings.RAG_TOKEN_ENCODING,
        )


class TextChunker:
    """Split text into chunks for embedding.

    Sentences are packed greedily while the chunk stays within ``chunk_tokens``;
    each new chunk starts with the trailing words of the previous one, up to
    ``overlap_tokens``. Sentences longer than a whole chunk are cut into word
    windows, and a single word longer than a chunk is cut on token boundaries.
    """

    def __init__(self, chunk_tokens: int = 800, overlap_tokens: int = 200, encoder=None,
                 encoding: str = ENCODING_NAME):
        self.chunk_tokens = max(1, int(chunk_tokens))
        # Overlap must leave room for new tokens in every window.
        self.overlap_tokens = min(max(0, int(overlap_tokens)), self.chunk_tokens - 1)
        self.encoding = encoding
        self._encoder = encoder

    @classmethod
    def from_config(cls, config: ChunkerConfig, encoder=None) -> "TextChunker":
        return cls(config.chunk_tokens, config.overlap_tokens, encoder=encoder, encoding=config.encoding)

    @property
    def encoder(self):
        if self._encoder is None:
            self._encoder = get_encoder(self.encoding)
        return self._encoder

    def count(self, text: str) -> int:
        return len(self.encoder.encode(text)) if text else 0

    def chunk(self, text: str) -> list[dict[str, Any]]:
        if not text or not text.strip():
            return []

        sentences = [" ".join(s.split()) for s in split_sentences(text)]
        if not sentences:
            return self._number(self._windows(text.split()))

        pieces: list[str] = []
        current = ""
        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence
            if self.count(candidate) <= self.chunk_tokens:
                current = candidate
                continue

            tail = ""
            if current:
                pieces.append(current)
                tail = self._tail(current)

            if self.count(sentence) > self.chunk_tokens:
                windows = self._windows(sentence.split())
                pieces.extend(windows[:-1])
                current = windows[-1]
            elif tail and self.count(f"{tail} {sentence}") <= self.chunk_tokens:
                current = f"{tail} {sentence}"
            else:
                current = sentence

        if current:
            pieces.append(current)

        return self._number(pieces)

    def _tail(self, text: str) -> str:
        """Longest run of trailing words that fits in the overlap budget."""
        if not self.overlap_tokens:
            return ""
        words = text.split()
        for n in range(min(len(words), self.overlap_tokens), 0, -1):
            tail = " ".join(words[-n:])
            if self.count(tail) <= self.overlap_tokens:
                return tail
        return ""

    def _windows(self, words: list[str]) -> list[str]:
        windows: list[str] = []
        start = 0
        while start < len(words):
            if self.count(words[start]) > self.chunk_tokens:
                windows.extend(self._split_word(words[start]))
                start += 1
                continue

            end = start + 1
            while end < len(words) and self.count(" ".join(words[start:end + 1])) <= self.chunk_tokens:
                end += 1
            windows.append(" ".join(words[start:end]))
            if end >= len(words):
                break

            overlap = len(self._tail(" ".join(words[start:end])).split())
            start = max(start + 1, end - overlap)
        return windows

    def _split_word(self, word: str) -> list[str]:
        tokens = self.encoder.encode(word)
        return [
            self.encoder.decode(tokens[i:i + self.chunk_tokens])
            for i in range(0, len(tokens), self.chunk_tokens)
        ]

    def _number(self, pieces: list[str]) -> list[dict[str, Any]]:
        return [
            {"content": content, "index": index, "token_count": self.count(content)}
            for index, content in enumerate(p for p in pieces if p)
        ]
