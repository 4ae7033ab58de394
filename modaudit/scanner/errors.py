from __future__ import annotations


class ScanError(Exception):
    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


class ArchiveReadError(ScanError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "IO_FAILURE")


class MalformedMetadataError(ScanError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "MALFORMED_METADATA")


class CorpusCompileError(ScanError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "CORPUS_COMPILE_FAILURE")


class InputPathError(ScanError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "INPUT_UNREADABLE")
