#!/usr/bin/env python3
"""
translate_meta.py

Localizes item metadata files from meta/ into dist/.

Each meta/*.yaml file carries a `name` and a `description`. The source
language is guessed from the name, then the pair is translated into every
target language (zh-CN, zh-TW, en) through a chat-completion API. The result
is written to dist/<item>.json with the original fields plus an `i18ns`
mapping. Reference files from glossaries/ are copied verbatim to
dist/glossaries/.

A failed translation never stops the batch: that language falls back to the
source text. Malformed metadata, a missing glossaries/ directory or any other
unexpected error aborts the run with exit status 1.

Environment (a .env file in the base directory is loaded first):
    BASI_OPENAI_KEY     API key; only required once a file needs translating
    BASI_OPENAI_API     chat-completion endpoint (default: OpenAI)
    BASI_OPENAI_MODEL   model name (default: gpt-4-0125-preview)

Usage:
    python translate_meta.py                  # ./meta -> ./dist
    python translate_meta.py --base site/     # site/meta -> site/dist
    python translate_meta.py --dry-run        # detect and report only
"""

import re
import sys
import json
import os
import shutil
import argparse
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

import requests
import yaml
from dotenv import load_dotenv

# ── Paths ──────────────────────────────────────────────────────────────────────

META_DIRNAME = "meta"
DIST_DIRNAME = "dist"
GLOSSARY_DIRNAME = "glossaries"

META_SUFFIX = ".yaml"
OUTPUT_SUFFIX = ".json"

# ── Chat-completion API ────────────────────────────────────────────────────────

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4-0125-preview"
REQUEST_TIMEOUT = 120

SYSTEM_PROMPT = (
    "你是一个专业的翻译引擎。请将输入的JSON对象准确翻译为目标语言，"
    "保持JSON结构不变，只翻译值部分。"
)
USER_PROMPT = "请翻译为{language}，以JSON格式返回:\n{payload}"


# ── Languages ──────────────────────────────────────────────────────────────────

class Lang(str, Enum):
    """Language tags produced by detect_language(); AUTO means undetermined."""

    ZH_CN = "zh-CN"
    ZH_TW = "zh-TW"
    EN = "en"
    AUTO = "auto"


TARGET_LANGS: tuple[Lang, ...] = (Lang.ZH_CN, Lang.ZH_TW, Lang.EN)

# Display names embedded in the prompt; every target needs one.
LANGUAGE_NAMES: dict[Lang, str] = {
    Lang.ZH_CN: "简体中文",
    Lang.ZH_TW: "繁体中文",
    Lang.EN: "英文",
}

HAN_RE = re.compile(r"[\u4e00-\u9fa5]")
# Hand-picked characters that only occur in traditional script. Known to be
# incomplete; keep the list as-is so output stays stable.
TRADITIONAL_RE = re.compile(r"[萬與醜專業叢東絲兩嚴喪個爿豐臨為麗舉愛練叢臺與]")
# CJK ideographs plus CJK symbols and full-width forms; anything else non-ASCII
# (other than punctuation and whitespace) marks a second script.
CJK_RE = re.compile(r"[\u3000-\u303f\u3400-\u9fff\uf900-\ufaff\uff00-\uffef\U00020000-\U0003134f]")


# ── Errors ─────────────────────────────────────────────────────────────────────

class TranslateMetaError(RuntimeError):
    pass


class ConfigurationError(TranslateMetaError):
    """Missing API key or unsupported target language."""


class UpstreamError(TranslateMetaError):
    """The translation API answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"{status_code}: {body}")
        self.status_code = status_code
        self.body = body


class TranslationFormatError(TranslateMetaError):
    """The API reply did not contain the expected JSON document."""


class MetadataError(TranslateMetaError):
    """A metadata file could not be parsed into name/description."""


# ── Configuration ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Config:
    base_dir: Path = Path(".")
    api_key: Optional[str] = None
    api_url: str = DEFAULT_API_URL
    model: str = DEFAULT_MODEL
    timeout: float = REQUEST_TIMEOUT
    dry_run: bool = False

    @property
    def meta_dir(self) -> Path:
        return self.base_dir / META_DIRNAME

    @property
    def dist_dir(self) -> Path:
        return self.base_dir / DIST_DIRNAME

    @property
    def glossary_dir(self) -> Path:
        return self.base_dir / GLOSSARY_DIRNAME

    @property
    def glossary_dist_dir(self) -> Path:
        return self.dist_dir / GLOSSARY_DIRNAME

    @classmethod
    def from_env(
        cls,
        base_dir: Path,
        environ: Mapping[str, str],
        dry_run: bool = False,
    ) -> "Config":
        """
        Build the run configuration from environment variables.
        A missing key is not an error here; it only surfaces when a
        translation is actually requested.
        """
        return cls(
            base_dir=base_dir,
            api_key=environ.get("BASI_OPENAI_KEY") or None,
            api_url=environ.get("BASI_OPENAI_API") or DEFAULT_API_URL,
            model=environ.get("BASI_OPENAI_MODEL") or DEFAULT_MODEL,
            dry_run=dry_run,
        )


# ── Records ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TranslationPair:
    name: str
    description: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "description": self.description}


@dataclass(frozen=True)
class TranslationResult:
    """Outcome of one translation call: either `pair` or `error` is set."""

    pair: Optional[TranslationPair] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.pair is not None


@dataclass
class MetadataRecord:
    """
    One metadata file. `fields` is the parsed YAML mapping, kept whole so
    fields other than name/description reach the output untouched.
    """

    source: Path
    fields: dict
    translations: dict[Lang, TranslationPair] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.fields["name"]

    @property
    def description(self) -> str:
        return self.fields["description"]

    @property
    def source_pair(self) -> TranslationPair:
        return TranslationPair(self.name, self.description)

    def to_dict(self) -> dict:
        data = dict(self.fields)
        data["i18ns"] = {
            lang.value: pair.to_dict() for lang, pair in self.translations.items()
        }
        return data


# ── Language detection ─────────────────────────────────────────────────────────

def _is_foreign_char(ch: str) -> bool:
    """Non-ASCII, non-CJK, and not punctuation or whitespace (kana, é, emoji, ™...)."""
    if ch.isascii() or ch.isspace() or CJK_RE.match(ch):
        return False
    return not unicodedata.category(ch).startswith("P")


def _is_plain_text_char(ch: str) -> bool:
    if ch.isascii() and ch.isalnum():
        return True
    return ch.isspace() or unicodedata.category(ch).startswith("P")


def detect_language(text: str) -> Lang:
    """
    Guess the language of a short text from its characters.

    Han text is zh-TW when it contains one of the traditional-only
    characters and zh-CN otherwise. Han mixed with other non-ASCII
    characters (kana, accented letters, emoji) is undetermined. Text made of ASCII letters, digits, whitespace
    and punctuation is English, the empty string included.
    """
    if HAN_RE.search(text):
        if any(_is_foreign_char(ch) for ch in text):
            return Lang.AUTO
        if TRADITIONAL_RE.search(text):
            return Lang.ZH_TW
        return Lang.ZH_CN

    if all(_is_plain_text_char(ch) for ch in text):
        return Lang.EN

    return Lang.AUTO


# ── Translation client ─────────────────────────────────────────────────────────

def build_request(pair: TranslationPair, target: Lang, config: Config) -> dict:
    language = LANGUAGE_NAMES.get(target)
    if not language:
        raise ConfigurationError(f"Unsupported target language: {target.value}")

    payload = json.dumps(
        {"title": pair.name, "description": pair.description},
        ensure_ascii=False,
        indent=2,
    )
    return {
        "model": config.model,
        "temperature": 0,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": USER_PROMPT.format(language=language, payload=payload),
            },
        ],
    }


def parse_completion(body: str) -> TranslationPair:
    """
    Extract the translated pair from a chat-completion response body.
    The message content is itself a JSON document with `title` and
    `description` keys.
    """
    try:
        data = json.loads(body)
        content = data["choices"][0]["message"]["content"]
        result = json.loads(content)
    except (ValueError, KeyError, IndexError, TypeError) as exc:
        raise TranslationFormatError(f"Unexpected API reply: {exc}") from exc

    if not isinstance(result, dict):
        raise TranslationFormatError("Translated content is not a JSON object")
    name = result.get("title")
    description = result.get("description")
    if not isinstance(name, str) or not isinstance(description, str):
        raise TranslationFormatError("Translated content lacks title/description")
    return TranslationPair(name, description)


def request_translation(
    pair: TranslationPair,
    target: Lang,
    config: Config,
) -> TranslationPair:
    """Send one translation request. Raises on any failure; no retry."""
    if not config.api_key:
        raise ConfigurationError("BASI_OPENAI_KEY is not set")

    body = build_request(pair, target, config)
    resp = requests.post(
        config.api_url,
        headers={"Authorization": f"Bearer {config.api_key}"},
        json=body,
        timeout=config.timeout,
    )
    if not 200 <= resp.status_code < 300:
        raise UpstreamError(resp.status_code, resp.text)
    return parse_completion(resp.text)


def translate(pair: TranslationPair, target: Lang, config: Config) -> TranslationResult:
    """Translate `pair` into `target`; failures are returned, not raised."""
    try:
        return TranslationResult(pair=request_translation(pair, target, config))
    except (TranslateMetaError, requests.RequestException, ValueError) as exc:
        return TranslationResult(error=f"{type(exc).__name__}: {exc}")


# ── Glossaries ─────────────────────────────────────────────────────────────────

def copy_glossaries(src_dir: Path, dst_dir: Path) -> int:
    """
    Copy every regular file from src_dir into dst_dir, overwriting.
    Subdirectories are skipped. Returns the number of files copied.
    """
    dst_dir.mkdir(parents=True, exist_ok=True)
    copied = 0
    for src in sorted(src_dir.iterdir()):
        if not src.is_file():
            continue
        shutil.copyfile(src, dst_dir / src.name)
        print(f"[glossary] Copied {src.name} to {dst_dir}", flush=True)
        copied += 1
    return copied


# ── Metadata files ─────────────────────────────────────────────────────────────

def list_metadata_files(meta_dir: Path) -> list[Path]:
    return sorted(
        p for p in meta_dir.iterdir() if p.is_file() and p.name.endswith(META_SUFFIX)
    )


def load_record(path: Path) -> MetadataRecord:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise MetadataError(f"{path.name}: invalid YAML: {exc}") from exc

    if not isinstance(data, dict):
        raise MetadataError(f"{path.name}: expected a mapping at top level")
    for key in ("name", "description"):
        if not isinstance(data.get(key), str):
            raise MetadataError(f"{path.name}: '{key}' must be a string")
    return MetadataRecord(source=path, fields=data)


def output_path(src: Path, dist_dir: Path) -> Path:
    return dist_dir / src.with_suffix(OUTPUT_SUFFIX).name


def write_record(record: MetadataRecord, dst: Path) -> None:
    # default=str keeps YAML dates/timestamps serialisable
    with open(dst, "w", encoding="utf-8") as f:
        json.dump(record.to_dict(), f, ensure_ascii=False, indent=2, default=str)


# ── Batch processing ───────────────────────────────────────────────────────────

def localize_record(record: MetadataRecord, config: Config) -> None:
    """Fill record.translations for every target language."""
    source = detect_language(record.name)
    print(f"  Source language: {source.value}", flush=True)

    for lang in TARGET_LANGS:
        if lang == source:
            print(f"  {lang.value}: same as source, kept as-is", flush=True)
            record.translations[lang] = record.source_pair
            continue

        if config.dry_run:
            placeholder = TranslationPair(
                f"[TR]{record.name}", f"[TR]{record.description}"
            )
            record.translations[lang] = placeholder
            print(f"  {lang.value}: would translate -> {placeholder.name[:30]}", flush=True)
            continue

        result = translate(record.source_pair, lang, config)
        if result.ok:
            record.translations[lang] = result.pair
            print(f"  {lang.value}: {result.pair.name[:30]}", flush=True)
        else:
            print(
                f"  [WARN] {record.source.name}: {lang.value} translation failed, "
                f"keeping source text ({result.error})",
                file=sys.stderr,
            )
            record.translations[lang] = record.source_pair


def run(config: Config) -> int:
    """
    Process every metadata file under config.meta_dir.
    Returns the number of files processed.
    """
    if not config.dry_run:
        config.dist_dir.mkdir(parents=True, exist_ok=True)
        copy_glossaries(config.glossary_dir, config.glossary_dist_dir)

    print(f"[meta] Scanning {config.meta_dir}", flush=True)
    files = list_metadata_files(config.meta_dir)

    for idx, src in enumerate(files, start=1):
        print(f"[{idx}/{len(files)}] {src.name}", flush=True)
        record = load_record(src)
        localize_record(record, config)

        if config.dry_run:
            continue
        dst = output_path(src, config.dist_dir)
        write_record(record, dst)
        print(f"  Wrote {dst}", flush=True)

    if not files:
        print(
            f"[WARN] No {META_SUFFIX} files found in {config.meta_dir}",
            file=sys.stderr,
        )
    else:
        print(f"\nDone. {len(files)} file(s) processed.", flush=True)
    return len(files)


# ── Entry point ────────────────────────────────────────────────────────────────

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Translate meta/*.yaml name/description into dist/*.json."
    )
    parser.add_argument(
        "--base",
        default=".",
        metavar="DIR",
        help="Directory holding meta/, glossaries/ and dist/ (default: current dir).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Detect and report without calling the API or writing files.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    base_dir = Path(args.base)

    load_dotenv(base_dir / ".env")
    config = Config.from_env(base_dir, os.environ, dry_run=args.dry_run)

    try:
        run(config)
    except Exception as exc:
        print(f"[ERROR] Translation run failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
