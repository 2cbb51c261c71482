"""
Constants and mappings for the NotebookLM RPC surface.

Single place for service URLs, cookie names, and the integer codes the
service uses in its payloads. The client and the tool registry both read
from here so that a code change upstream is a one-line fix.
"""


class CodeMapper:
    """
    Bidirectional mapping for API codes.

    Lookups by name are case-insensitive. Unknown names raise ValueError with
    the list of valid options; unknown codes map to ``unknown_label``.
    """

    def __init__(self, mapping: dict[str, int], unknown_label: str = "unknown"):
        self._name_to_code: dict[str, int] = {k.lower(): v for k, v in mapping.items()}
        self._code_to_name: dict[int, str] = {v: k for k, v in mapping.items()}
        self._unknown_label = unknown_label
        self._display_names = sorted(mapping.keys())

    def get_code(self, name: str) -> int:
        """
        Get integer code for a string name.

        Raises:
            ValueError: If the name is empty or unknown.
        """
        if not name:
            raise ValueError(f"Invalid name: '{name}'. Must be one of: {self.options_str}")

        code = self._name_to_code.get(name.lower())
        if code is None:
            raise ValueError(f"Unknown name '{name}'. Must be one of: {self.options_str}")
        return code

    def get_name(self, code: int | None) -> str:
        """Get string name for an integer code, or the unknown label."""
        if code is None:
            return self._unknown_label
        return self._code_to_name.get(code, self._unknown_label)

    @property
    def options_str(self) -> str:
        return ", ".join(self._display_names)


# =============================================================================
# Service endpoints
# =============================================================================
TARGET_HOST = "notebooklm.google.com"
BASE_URL = f"https://{TARGET_HOST}"
BATCHEXECUTE_URL = f"{BASE_URL}/_/LabsTailwindUi/data/batchexecute"
QUERY_URL = (
    f"{BASE_URL}/_/LabsTailwindUi/data/"
    "google.internal.labs.tailwind.orchestration.v1.LabsTailwindOrchestrationService/GenerateFreeFormStreamed"
)
DEFAULT_BUILD_LABEL = "boq_labs-tailwind-frontend_20260108.06_p0"

# Landing on one of these after the entry-page fetch means the session is dead
IDENTITY_PROVIDER_HOSTS = ("accounts.google.com",)

# =============================================================================
# Session cookies
# =============================================================================
REQUIRED_COOKIES = ("SID", "HSID", "SSID", "APISID", "SAPISID")
SESSION_COOKIE_NAMES = ("SID", "__Secure-3PSID")

# =============================================================================
# Ownership (notebook metadata position 0; 2 = shared with me)
# =============================================================================
OWNERSHIP_MINE = 1

# =============================================================================
# Research / Source Discovery
# =============================================================================
RESEARCH_SOURCE_WEB = 1
RESEARCH_SOURCE_DRIVE = 2

RESEARCH_SOURCES = CodeMapper({
    "web": RESEARCH_SOURCE_WEB,
    "drive": RESEARCH_SOURCE_DRIVE,
})

RESEARCH_MODE_FAST = 1
RESEARCH_MODE_DEEP = 5

RESEARCH_MODES = CodeMapper({
    "fast": RESEARCH_MODE_FAST,
    "deep": RESEARCH_MODE_DEEP,
})

RESULT_TYPE_WEB = 1
RESULT_TYPE_GOOGLE_DOC = 2
RESULT_TYPE_GOOGLE_SLIDES = 3
RESULT_TYPE_DEEP_REPORT = 5
RESULT_TYPE_GOOGLE_SHEETS = 8

RESULT_TYPES = CodeMapper({
    "web": RESULT_TYPE_WEB,
    "google_doc": RESULT_TYPE_GOOGLE_DOC,
    "google_slides": RESULT_TYPE_GOOGLE_SLIDES,
    "deep_report": RESULT_TYPE_DEEP_REPORT,
    "google_sheets": RESULT_TYPE_GOOGLE_SHEETS,
})

# Research task status (task_info position 4)
RESEARCH_STATUS_RUNNING = 1
RESEARCH_STATUS_COMPLETED = 2
RESEARCH_STATUS_FAILED = 3
RESEARCH_STATUS_IMPORTED = 6  # sources imported; also terminal

# =============================================================================
# Source Types (notebook content, metadata position 4)
# =============================================================================
SOURCE_TYPE_GOOGLE_DOCS = 1
SOURCE_TYPE_GOOGLE_OTHER = 2
SOURCE_TYPE_PDF = 3
SOURCE_TYPE_PASTED_TEXT = 4
SOURCE_TYPE_WEB_PAGE = 5
SOURCE_TYPE_GENERATED_TEXT = 8
SOURCE_TYPE_YOUTUBE = 9
SOURCE_TYPE_UPLOADED_FILE = 11
SOURCE_TYPE_IMAGE = 13
SOURCE_TYPE_WORD_DOC = 14

SOURCE_TYPES = CodeMapper({
    "google_docs": SOURCE_TYPE_GOOGLE_DOCS,
    "google_slides_sheets": SOURCE_TYPE_GOOGLE_OTHER,
    "pdf": SOURCE_TYPE_PDF,
    "pasted_text": SOURCE_TYPE_PASTED_TEXT,
    "web_page": SOURCE_TYPE_WEB_PAGE,
    "generated_text": SOURCE_TYPE_GENERATED_TEXT,
    "youtube": SOURCE_TYPE_YOUTUBE,
    "uploaded_file": SOURCE_TYPE_UPLOADED_FILE,
    "image": SOURCE_TYPE_IMAGE,
    "word_doc": SOURCE_TYPE_WORD_DOC,
})

# =============================================================================
# Studio
# =============================================================================
STUDIO_TYPE_AUDIO = 1
STUDIO_TYPE_REPORT = 2
STUDIO_TYPE_VIDEO = 3
STUDIO_TYPE_FLASHCARDS = 4  # Also Quiz
STUDIO_TYPE_INFOGRAPHIC = 7
STUDIO_TYPE_SLIDE_DECK = 8
STUDIO_TYPE_DATA_TABLE = 9

STUDIO_TYPES = CodeMapper({
    "audio": STUDIO_TYPE_AUDIO,
    "report": STUDIO_TYPE_REPORT,
    "video": STUDIO_TYPE_VIDEO,
    "flashcards": STUDIO_TYPE_FLASHCARDS,
    "infographic": STUDIO_TYPE_INFOGRAPHIC,
    "slide_deck": STUDIO_TYPE_SLIDE_DECK,
    "data_table": STUDIO_TYPE_DATA_TABLE,
})

# Artifact status (artifact position 4)
STUDIO_STATUS_RUNNING = 1
STUDIO_STATUS_COMPLETED = 3
STUDIO_STATUS_FAILED = 4

AUDIO_FORMAT_DEEP_DIVE = 1
AUDIO_FORMAT_BRIEF = 2
AUDIO_FORMAT_CRITIQUE = 3
AUDIO_FORMAT_DEBATE = 4

AUDIO_FORMATS = CodeMapper({
    "deep_dive": AUDIO_FORMAT_DEEP_DIVE,
    "brief": AUDIO_FORMAT_BRIEF,
    "critique": AUDIO_FORMAT_CRITIQUE,
    "debate": AUDIO_FORMAT_DEBATE,
})

AUDIO_LENGTH_SHORT = 1
AUDIO_LENGTH_DEFAULT = 2
AUDIO_LENGTH_LONG = 3

AUDIO_LENGTHS = CodeMapper({
    "short": AUDIO_LENGTH_SHORT,
    "default": AUDIO_LENGTH_DEFAULT,
    "long": AUDIO_LENGTH_LONG,
})

# =============================================================================
# RPC error codes (wrb.fr entry position 5)
# =============================================================================
RPC_ERROR_DEADLINE_EXCEEDED = 4
RPC_ERROR_NOT_FOUND = 5
RPC_ERROR_UNAUTHENTICATED = 16
