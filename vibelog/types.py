"""
Shared type definitions for the vibelog package.

Centralizes common type annotations used across multiple modules.
"""

from datetime import datetime
from typing import Annotated, Literal

import pydantic

# Pydantic-enhanced datetime for JSON serialization (allows string→datetime conversion)
JsonDatetime = Annotated[datetime, pydantic.Field(strict=False)]

MessageRole = Literal['user', 'assistant', 'system']

# Redaction categories, in the order they are reported
RedactionCategory = Literal['code_blocks', 'credentials', 'paths', 'urls', 'emails', 'env_vars']
REDACTION_CATEGORIES: tuple[RedactionCategory, ...] = (
    'code_blocks',
    'credentials',
    'paths',
    'urls',
    'emails',
    'env_vars',
)
