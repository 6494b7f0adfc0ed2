"""Closed registry of tool identifiers accepted for job submission."""

from fileswift.errors import InvalidTool

# Canonical tools and the worker-side processor family that handles them
TOOLS: dict[str, str] = {
    # PDF tools
    "compress-pdf": "pdf",
    "pdf-to-word": "pdf",
    "merge-pdf": "pdf",
    "rotate-pdf": "pdf",
    "split-pdf": "pdf",
    "pdf-to-image": "pdf",
    "doc-to-pdf": "document",
    # Image tools
    "image-compressor": "image",
    "image-resizer": "image",
    "bulk-image-resizer": "image",
    "image-to-pdf": "image",
    "remove-bg": "image",
    # AI document tools
    "ai-summary": "document",
    "ai-notes": "document",
    "ai-rewrite": "document",
    "ai-translate": "document",
}

# Landing-page tool ids that run a parent tool's processor
ALIASES: dict[str, str] = {
    "compress-pdf-for-bank-statement": "compress-pdf",
    "compress-pdf-for-email": "compress-pdf",
    "compress-pdf-to-1mb": "compress-pdf",
    "compress-pdf-under-200kb": "compress-pdf",
    "resize-image-for-youtube-thumbnail": "image-resizer",
    "resize-photo-for-resume": "image-resizer",
    "resize-image-for-instagram": "image-resizer",
    "resize-image-for-linkedin": "image-resizer",
    "resize-image-for-facebook": "image-resizer",
    "convert-scanned-pdf-to-word": "pdf-to-word",
    "convert-pdf-to-word-online": "pdf-to-word",
}

# Tools whose inputs must be PDF documents
PDF_INPUT_TOOLS = frozenset({
    "compress-pdf",
    "merge-pdf",
    "split-pdf",
    "rotate-pdf",
    "pdf-to-image",
    "pdf-to-word",
    "ai-summary",
    "ai-notes",
    "ai-rewrite",
    "ai-translate",
})


def is_valid_tool(tool_id: str) -> bool:
    return tool_id in TOOLS or tool_id in ALIASES


def ensure_valid_tool(tool_id: str) -> str:
    """Return ``tool_id`` unchanged or raise :class:`InvalidTool`."""
    if not isinstance(tool_id, str) or not is_valid_tool(tool_id):
        raise InvalidTool(str(tool_id))
    return tool_id


def canonical_tool(tool_id: str) -> str:
    """Resolve an alias to the tool that actually processes it."""
    ensure_valid_tool(tool_id)
    return ALIASES.get(tool_id, tool_id)


def expects_pdf(tool_id: str) -> bool:
    return canonical_tool(tool_id) in PDF_INPUT_TOOLS
