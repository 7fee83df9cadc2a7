"""Remote code execution for the playground through the Piston API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from env_validation import get_env_float
from schemas import ExecutionResult

logger = logging.getLogger(__name__)

CODE_EXEC_URL = os.getenv("CODE_EXEC_URL", "https://emkc.org/api/v2/piston").rstrip("/")
CODE_EXEC_TIMEOUT = get_env_float("CODE_EXEC_TIMEOUT", 10.0)
# slack on top of the run timeout for queueing and transfer
HTTP_TIMEOUT_SLACK = 10.0
LIVE_PREVIEW_MESSAGE = "[Live Preview] HTML/CSS/JS is rendered in the preview tab."


class CodeExecutionError(RuntimeError):
    """Raised when a snippet cannot be submitted or the runner rejects it."""


@dataclass(frozen=True)
class Language:
    id: str
    label: str
    piston_id: str
    piston_version: str
    extension: str
    supports_stdin: bool = True
    is_web: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "extension": self.extension,
            "version": self.piston_version or "Browser",
            "supportsStdin": self.supports_stdin,
            "isWebLang": self.is_web,
        }


LANGUAGES: List[Language] = [
    Language("python", "Python", "python", "3.10.0", ".py"),
    Language("javascript", "JavaScript", "javascript", "18.15.0", ".js", supports_stdin=False),
    Language("typescript", "TypeScript", "typescript", "5.0.3", ".ts", supports_stdin=False),
    Language("c", "C", "c", "10.2.0", ".c"),
    Language("cpp", "C++", "c++", "10.2.0", ".cpp"),
    Language("java", "Java", "java", "15.0.2", ".java"),
    Language("csharp", "C#", "csharp.net", "5.0.201", ".cs"),
    Language("go", "Go", "go", "1.16.2", ".go"),
    Language("rust", "Rust", "rust", "1.68.2", ".rs"),
    Language("ruby", "Ruby", "ruby", "3.0.1", ".rb"),
    Language("php", "PHP", "php", "8.2.3", ".php"),
    Language("swift", "Swift", "swift", "5.3.3", ".swift", supports_stdin=False),
    Language("kotlin", "Kotlin", "kotlin", "1.8.20", ".kt"),
    Language("lua", "Lua", "lua", "5.4.4", ".lua"),
    Language("html", "HTML/CSS/JS", "", "", ".html", supports_stdin=False, is_web=True),
]


def get_language_by_id(language_id: str) -> Optional[Language]:
    for language in LANGUAGES:
        if language.id == language_id:
            return language
    return None


def get_file_name(language: Language) -> str:
    # Java requires the public class to live in Main.java
    if language.id == "java":
        return "Main.java"
    return f"main{language.extension}"


def build_payload(language: Language, code: str, stdin: str = "") -> Dict[str, Any]:
    return {
        "language": language.piston_id,
        "version": language.piston_version,
        "files": [{"name": get_file_name(language), "content": code}],
        "stdin": stdin or "",
        "run_timeout": int(CODE_EXEC_TIMEOUT * 1000),
    }


def parse_result(data: Dict[str, Any], language: Language) -> ExecutionResult:
    run = data.get("run") or {}
    compile_ = data.get("compile") or {}
    exit_code = run.get("code")
    return ExecutionResult(
        stdout=run.get("stdout") or "",
        stderr=run.get("stderr") or compile_.get("stderr") or "",
        exit_code=-1 if exit_code is None else int(exit_code),
        signal=run.get("signal") or None,
        language=data.get("language") or language.label,
        version=data.get("version") or language.piston_version,
    )


def execute_code(language_id: str, code: str, stdin: str = "") -> ExecutionResult:
    """Run ``code`` remotely and return its captured output."""
    language = get_language_by_id(language_id)
    if language is None:
        raise CodeExecutionError(f"Unsupported language: {language_id}")

    if language.is_web:
        return ExecutionResult(
            stdout=LIVE_PREVIEW_MESSAGE,
            exit_code=0,
            language=language.label,
            version="Browser",
        )

    url = f"{CODE_EXEC_URL}/execute"
    logger.info("Executing %s snippet (%d chars)", language.id, len(code))
    try:
        response = requests.post(
            url,
            json=build_payload(language, code, stdin),
            timeout=CODE_EXEC_TIMEOUT + HTTP_TIMEOUT_SLACK,
        )
    except requests.RequestException as exc:
        raise CodeExecutionError(f"Code runner unreachable: {exc}") from exc

    if response.status_code >= 400:
        raise CodeExecutionError(f"Piston API error ({response.status_code}): {response.text}")
    try:
        data = response.json()
    except ValueError as exc:
        raise CodeExecutionError("Piston API returned invalid JSON") from exc
    return parse_result(data, language)


__all__ = [
    "CodeExecutionError",
    "LANGUAGES",
    "Language",
    "execute_code",
    "get_file_name",
    "get_language_by_id",
]
