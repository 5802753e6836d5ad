"""
Message sanitizer - redacts sensitive content from transcripts before upload.

Redaction is an ordered pipeline of stages. Each stage is a compiled pattern,
a replacer and the redaction category it counts under. Stages run in a fixed
order over the evolving text, so later stages never see what earlier stages
already removed:

    1. code fences          -> [CODE_BLOCK_code_N: lang]    (code_blocks)
    2. credentials          -> [CREDENTIAL_credential_N]    (credentials)
    3. URLs                 -> [DATABASE_URL] / [API_URL]   (urls)
    4. environment vars     -> [ENV_VAR_env_var_N]          (env_vars)
    5. emails, IP addresses -> [EMAIL_email_N] / [IP_ADDRESS] (emails / uncounted)
    6. file paths           -> [PATH_path_N]                (paths)

Everything around the redacted spans is left untouched so a reviewer can
still follow the conversation. Placeholder numbers are per entity type and
per sanitize call (one session), so a placeholder never stands for two
different values within one pass.

The sanitizer is pure and never raises on malformed content: empty, missing
or structured content is flattened to text first, and anything without a
match passes through with all counters at zero.

Example:
    Input:  "Check the file at /home/user/project/secret.env with API_KEY=sk_live_4eC39HqLyjWDarjtT1"
    Output: "Check the file at [PATH_path_1] with API_KEY=[CREDENTIAL_credential_1]"
"""

from __future__ import annotations

import json
import logging
import math
import os
import re
from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import attrs

from vibelog.schemas.messages import Message, MessageMetadata, RedactedItems, SanitizedMessage
from vibelog.types import MessageRole, RedactionCategory

__all__ = [
    'CREDENTIAL_PATTERNS_VERSION',
    'DEFAULT_CREDENTIAL_PATTERNS',
    'CredentialPattern',
    'EntityNamer',
    'MessageSanitizer',
    'RedactionStage',
    'flatten_content',
    'looks_like_credential',
    'sanitize',
]

logger = logging.getLogger(__name__)

# Bump when the credential table changes so uploaded counts can be compared across releases
CREDENTIAL_PATTERNS_VERSION = '2'

_VALID_ROLES: frozenset[str] = frozenset({'user', 'assistant', 'system'})


# ==============================================================================
# Pattern tables
# ==============================================================================


@attrs.define(frozen=True)
class CredentialPattern:
    """A named credential matcher.

    If the pattern defines a `secret` group, only that group is replaced and the
    rest of the match (a key name, an auth scheme) stays in the text.
    """

    name: str
    regex: re.Pattern[str]
    # Optional extra check on the secret text; returning False keeps the match
    accept: Callable[[str, bool], bool] | None = None


def _shannon_entropy(text: str) -> float:
    """Bits per character. Random tokens score ~4.5+, English words ~2.5-3.5."""
    if not text:
        return 0.0
    length = len(text)
    return -sum((n / length) * math.log2(n / length) for n in Counter(text).values())


def _assigned_value_is_secret(value: str, quoted: bool) -> bool:
    """Decide whether the right-hand side of `password = ...` is a real secret.

    Quoted literals are always secrets. Bare values need letters and digits
    together or high entropy, which keeps `token = getToken` and
    `secret: process.env.SECRET` out.
    """
    if quoted:
        return True
    has_alpha = any(c.isalpha() for c in value)
    has_digit = any(c.isdigit() for c in value)
    return (has_alpha and has_digit) or _shannon_entropy(value) >= 3.5


DEFAULT_CREDENTIAL_PATTERNS: tuple[CredentialPattern, ...] = (
    CredentialPattern(
        'Private key block',
        re.compile(r'-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----'),
    ),
    CredentialPattern('GitHub token', re.compile(r'\bgh[pousr]_[A-Za-z0-9]{12,}\b')),
    CredentialPattern('GitHub fine-grained token', re.compile(r'\bgithub_pat_[A-Za-z0-9_]{22,}\b')),
    CredentialPattern('Anthropic API key', re.compile(r'\bsk-ant-[A-Za-z0-9_\-]{12,}')),
    CredentialPattern('Stripe key', re.compile(r'\b[spr]k_(?:live|test)_[A-Za-z0-9]{12,}\b')),
    CredentialPattern('Secret key', re.compile(r'\bsk[-_][A-Za-z0-9_\-]{12,}')),
    CredentialPattern('AWS access key', re.compile(r'\b(?:AKIA|ASIA)[A-Z0-9]{16}\b')),
    CredentialPattern('Google API key', re.compile(r'\bAIza[0-9A-Za-z_\-]{35}\b')),
    CredentialPattern('Slack token', re.compile(r'\bxox[abprs]-[A-Za-z0-9\-]{10,}')),
    CredentialPattern('SendGrid API key', re.compile(r'\bSG\.[A-Za-z0-9_\-]{16,}\.[A-Za-z0-9_\-]{16,}')),
    CredentialPattern('NPM token', re.compile(r'\bnpm_[A-Za-z0-9]{12,}\b')),
    CredentialPattern('JWT', re.compile(r'\beyJ[A-Za-z0-9_\-]{8,}\.eyJ[A-Za-z0-9_\-]{8,}\.[A-Za-z0-9_\-]{8,}')),
    CredentialPattern(
        'Authorization header',
        re.compile(r'\b(?:bearer|basic)\s+(?P<secret>[A-Za-z0-9\-._~+/]{12,}=*)', re.IGNORECASE),
    ),
    CredentialPattern(
        'Secret assignment',
        re.compile(
            r'\b[A-Za-z0-9_]{0,40}(?:api[_-]?key|apikey|secret|token|passw(?:or)?d|pwd|credentials?|private[_-]?key)'
            r'[A-Za-z0-9_]{0,40}["\']?\s*[:=]\s*(?P<quote>["\']?)(?!\$)(?P<secret>[^\s"\'`\[\](){}<>,;]{8,})',
            re.IGNORECASE,
        ),
        accept=_assigned_value_is_secret,
    ),
)

# Anchored indicators for inline `code` spans that hold a credential rather than code
_INLINE_CREDENTIAL_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(r'^[spr]k[-_](?:test|live)[-_]'),
    re.compile(r'^gh[pousr]_'),
    re.compile(r'^github_pat_'),
    re.compile(r'^(?:AKIA|ASIA)[A-Z0-9]'),
    re.compile(r'^xox[abprs]-'),
    re.compile(r'^npm_'),
    re.compile(r'^SG\.'),
    re.compile(r'^sk-ant-'),
    re.compile(r'^sk-[A-Za-z0-9]{20,}'),
    re.compile(
        r'^(?:api[_-]?key|api[_-]?secret|auth[_-]?token|access[_-]?token|private[_-]?key|password)'
        r'\s*[:=]\s*["\'][^"\']+["\']$',
        re.IGNORECASE,
    ),
    re.compile(r'^[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}$'),  # JWT
    re.compile(r'^(?:[a-f0-9]{32}|[a-f0-9]{40}|[a-f0-9]{64})$', re.IGNORECASE),  # MD5 / SHA1 / SHA256
)

_CODE_FENCE_RE = re.compile(r'```[\s\S]*?```')
_FENCE_LANG_RE = re.compile(r'^```(\w+)')
_INLINE_CODE_RE = re.compile(r'`([^`\n]+)`')

_DATABASE_SCHEMES = frozenset(
    {
        'postgres',
        'postgresql',
        'mysql',
        'mariadb',
        'mongodb',
        'mongodb+srv',
        'redis',
        'rediss',
        'amqp',
        'amqps',
        'mssql',
        'sqlserver',
    }
)
_URL_RE = re.compile(r'\b(?P<scheme>[A-Za-z][A-Za-z0-9+.\-]*)://[^\s<>"\'{}|\\^`\[\]]+')

_ENV_VAR_RE = re.compile(r'\$\{?[A-Z_][A-Z0-9_]*\}?')
_EMAIL_RE = re.compile(r'\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b')
_OCTET = r'(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)'
_IP_RE = re.compile(rf'(?<![\d.]){_OCTET}(?:\.{_OCTET}){{3}}(?!\.?\d)')

_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Windows: C:\Users\me\project
    re.compile(r'\b[A-Za-z]:\\(?:[^\\/\s"\'<>|:*?\[\]]+\\?)+'),
    # Home-relative: ~/project/notes.md
    re.compile(r'(?<![\w/])~/[\w.@+\-/]+'),
    # Absolute with at least two segments: /home/user/project
    re.compile(r'(?<![\w.\]/:~])/[\w.@+\-]+(?:/[\w.@+\-]+)+/?'),
    # Explicitly relative: ./src/app or ../config
    re.compile(r'(?<![\w/.])\.{1,2}/[\w.@+\-/]+'),
    # Bare multi-segment with an extension: src/lib/app.ts
    re.compile(r'(?<![\w.\]/:~@\-])(?:[\w.@+\-]+/)+[\w@+\-]+\.[A-Za-z0-9]{1,10}\b'),
)

_TRAILING_PUNCTUATION = '.,;:!?)\'"'

# Upper bound on pipeline passes over one text
_MAX_PASSES = 3


# ==============================================================================
# Pipeline
# ==============================================================================


class EntityNamer:
    """Hands out per-type sequence names: code_1, code_2, credential_1, ..."""

    def __init__(self) -> None:
        self._counters: Counter[str] = Counter()

    def get_name(self, entity_type: str) -> str:
        self._counters[entity_type] += 1
        return f'{entity_type}_{self._counters[entity_type]}'

    def reset(self) -> None:
        self._counters.clear()


# Replacer contract: return the replacement text, or None to keep the match as-is
Replacer = Callable[[re.Match[str], EntityNamer], str | None]


@attrs.define(frozen=True)
class RedactionStage:
    """One rewrite step: every match of `pattern` goes through `replace`.

    Matches that are replaced increment `category`; a stage with no category
    (IP addresses) redacts without counting.
    """

    name: str
    pattern: re.Pattern[str]
    replace: Replacer
    category: RedactionCategory | None


def _split_trailing_punctuation(text: str) -> tuple[str, str]:
    stripped = text.rstrip(_TRAILING_PUNCTUATION)
    return stripped, text[len(stripped) :]


def _replace_code_fence(match: re.Match[str], namer: EntityNamer) -> str:
    lang_match = _FENCE_LANG_RE.match(match.group(0))
    lang = lang_match.group(1) if lang_match else 'code'
    return f'[CODE_BLOCK_{namer.get_name("code")}: {lang}]'


def _replace_inline_credential(match: re.Match[str], namer: EntityNamer) -> str | None:
    if not looks_like_credential(match.group(1)):
        return None
    return f'[CREDENTIAL_{namer.get_name("credential")}]'


def _credential_replacer(pattern: CredentialPattern) -> Replacer:
    def replace(match: re.Match[str], namer: EntityNamer) -> str | None:
        groups = match.groupdict()
        secret = groups.get('secret')
        if pattern.accept is not None and not pattern.accept(secret or match.group(0), bool(groups.get('quote'))):
            return None

        placeholder = f'[CREDENTIAL_{namer.get_name("credential")}]'
        if not secret:
            return placeholder
        start = match.start('secret') - match.start()
        end = match.end('secret') - match.start()
        whole = match.group(0)
        return whole[:start] + placeholder + whole[end:]

    return replace


def _replace_url(match: re.Match[str], namer: EntityNamer) -> str:
    _, trailing = _split_trailing_punctuation(match.group(0))
    if match.group('scheme').lower() in _DATABASE_SCHEMES:
        return '[DATABASE_URL]' + trailing
    return '[API_URL]' + trailing


def _replace_env_var(match: re.Match[str], namer: EntityNamer) -> str:
    return f'[ENV_VAR_{namer.get_name("env_var")}]'


def _replace_email(match: re.Match[str], namer: EntityNamer) -> str:
    return f'[EMAIL_{namer.get_name("email")}]'


def _replace_ip(match: re.Match[str], namer: EntityNamer) -> str:
    return '[IP_ADDRESS]'


def _replace_path(match: re.Match[str], namer: EntityNamer) -> str | None:
    path, trailing = _split_trailing_punctuation(match.group(0))
    if not path:
        return None
    return f'[PATH_{namer.get_name("path")}]' + trailing


def build_stages(credential_patterns: Sequence[CredentialPattern]) -> tuple[RedactionStage, ...]:
    """Assemble the pipeline in its fixed priority order."""
    stages: list[RedactionStage] = [
        RedactionStage('code fence', _CODE_FENCE_RE, _replace_code_fence, 'code_blocks'),
        RedactionStage('inline credential', _INLINE_CODE_RE, _replace_inline_credential, 'credentials'),
    ]
    stages.extend(
        RedactionStage(pattern.name, pattern.regex, _credential_replacer(pattern), 'credentials')
        for pattern in credential_patterns
    )
    stages.extend(
        [
            RedactionStage('url', _URL_RE, _replace_url, 'urls'),
            RedactionStage('environment variable', _ENV_VAR_RE, _replace_env_var, 'env_vars'),
            RedactionStage('email', _EMAIL_RE, _replace_email, 'emails'),
            RedactionStage('ip address', _IP_RE, _replace_ip, None),
        ]
    )
    stages.extend(RedactionStage('path', pattern, _replace_path, 'paths') for pattern in _PATH_PATTERNS)
    return tuple(stages)


def looks_like_credential(text: str) -> bool:
    """True if an inline code span holds a credential rather than code."""
    cleaned = text.strip('`').strip()
    return any(indicator.search(cleaned) for indicator in _INLINE_CREDENTIAL_INDICATORS)


def flatten_content(content: Any) -> str:
    """Reduce raw message content to plain text.

    Text blocks are joined with spaces, tool results are flattened recursively,
    image blocks are dropped and counted, other blocks are skipped.
    """
    if content is None:
        return ''
    if isinstance(content, str):
        return content
    if isinstance(content, Mapping):
        content = [content]
    if not isinstance(content, list):
        return str(content)

    parts: list[str] = []
    image_count = 0
    for item in content:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, Mapping):
            block_type = item.get('type')
            if block_type == 'image':
                image_count += 1
            elif block_type == 'text' and isinstance(item.get('text'), str):
                parts.append(item['text'])
            elif block_type == 'tool_result':
                nested = flatten_content(item.get('content'))
                if nested:
                    parts.append(nested)

    result = ' '.join(parts).strip()
    if image_count:
        attachment = 'attachment' if image_count == 1 else 'attachments'
        marker = f'[{image_count} image {attachment}]'
        result = f'{result} {marker}' if result else marker
    return result


# ==============================================================================
# Sanitizer
# ==============================================================================


class MessageSanitizer:
    """
    Redaction engine for conversation messages.

    One instance can sanitize many sessions; entity numbering restarts with
    every `sanitize_messages()` call.
    """

    def __init__(
        self,
        credential_patterns: Sequence[CredentialPattern] = DEFAULT_CREDENTIAL_PATTERNS,
        debug: bool | None = None,
    ) -> None:
        """
        Initialize the sanitizer.

        Args:
            credential_patterns: Credential table to use (defaults to the built-in table)
            debug: Record a truncated preview of each credential match
                (defaults to the VIBE_LOG_DEBUG environment variable)
        """
        self.stages = build_stages(credential_patterns)
        self.debug = debug if debug is not None else os.environ.get('VIBE_LOG_DEBUG', '').lower() in ('1', 'true')
        self.debug_credentials: list[dict[str, str]] = []
        self._namer = EntityNamer()

    def sanitize_messages(self, messages: Iterable[Message | Mapping[str, Any]]) -> list[SanitizedMessage]:
        """Sanitize one session's messages. Length- and order-preserving."""
        # Numbering restarts per session
        self._namer.reset()
        self.debug_credentials = []
        return [self._sanitize_message(message) for message in messages]

    def sanitize_text(self, text: str) -> tuple[str, RedactedItems]:
        """Run the pipeline over a single text, continuing the current numbering.

        A placeholder can open a word boundary that hid a match on the first
        pass (`10.0.0.1Bearer ...`), so passes repeat until the text is stable.
        """
        counts: Counter[str] = Counter()
        for _ in range(_MAX_PASSES):
            before = text
            for stage in self.stages:
                text = self._apply_stage(stage, text, counts)
            if text == before:
                break
        return text, RedactedItems.from_counts(counts)

    def _apply_stage(self, stage: RedactionStage, text: str, counts: Counter[str]) -> str:
        def substitute(match: re.Match[str]) -> str:
            replacement = stage.replace(match, self._namer)
            if replacement is None:
                return match.group(0)
            if stage.category is not None:
                counts[stage.category] += 1
            if self.debug and stage.category == 'credentials':
                original = match.group(0)
                preview = original[:20] + '...' if len(original) > 20 else original
                self.debug_credentials.append({'text': preview, 'pattern': stage.name})
            return replacement

        return stage.pattern.sub(substitute, text)

    def _sanitize_message(self, message: Message | Mapping[str, Any]) -> SanitizedMessage:
        if isinstance(message, Message):
            role, raw_content, timestamp = message.role, message.content, message.timestamp
        elif isinstance(message, Mapping):
            role, raw_content, timestamp = message.get('role'), message.get('content'), message.get('timestamp')
        else:
            logger.debug('Unexpected message of type %s, treating it as empty', type(message).__name__)
            role, raw_content, timestamp = None, None, None

        text = flatten_content(raw_content)
        content, redacted = self.sanitize_text(text)

        return SanitizedMessage(
            role=_coerce_role(role),
            content=content,
            timestamp=_format_timestamp(timestamp),
            metadata=MessageMetadata(
                has_code=redacted.code_blocks > 0,
                redacted_items=redacted,
                original_length=len(text),
                sanitized_length=len(content),
            ),
        )


def _coerce_role(role: Any) -> MessageRole:
    if isinstance(role, str) and role in _VALID_ROLES:
        return role  # type: ignore[return-value]
    logger.debug('Unknown message role %r, treating as user', role)
    return 'user'


def _format_timestamp(value: Any) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2025-01-02T03:04:05.678Z."""
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=UTC)
        return moment.astimezone(UTC).isoformat(timespec='milliseconds').replace('+00:00', 'Z')
    if isinstance(value, str):
        return value
    return ''


def sanitize(messages: Iterable[Message | Mapping[str, Any]]) -> list[SanitizedMessage]:
    """Sanitize a message list with the default pattern table."""
    return MessageSanitizer().sanitize_messages(messages)


def dump_messages(messages: Sequence[SanitizedMessage]) -> str:
    """Serialize sanitized messages to the camelCase JSON used as messageSummary."""
    return json.dumps([message.model_dump(mode='json', by_alias=True) for message in messages])
