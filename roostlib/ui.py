"""
Roost User Interface Components

Display and clipboard helpers for the terminal front-end:
- Tabular listing of decrypted entries (secrets hidden)
- Detailed single-entry view
- Clipboard copy with auto-clear after a timeout

Dependencies: pyperclip for cross-platform clipboard support
"""

import logging
import threading
import time
from datetime import datetime
from typing import List, Sequence

import pyperclip

from .database import DecryptedEntry, SkippedEntry

logger = logging.getLogger(__name__)

# ==============================================================================
# FORMATTING HELPERS
# ==============================================================================

def format_created(created: str, with_time: bool = False) -> str:
    """
    Format an ISO-8601 creation timestamp as YYYY/MM/DD (optionally with time).

    Returns the raw value truncated to 10 characters if it cannot be parsed,
    and an empty string for a missing value.
    """
    if not created:
        return ""

    try:
        dt = datetime.fromisoformat(created)
    except ValueError:
        return created[:10].replace('-', '/')

    # Entries written without a timestamp carry the zero time
    if dt.year <= 1:
        return ""

    return dt.strftime("%Y/%m/%d %H:%M:%S" if with_time else "%Y/%m/%d")

# ==============================================================================
# ENTRY DISPLAY FUNCTIONS
# ==============================================================================

def render_entries_table(entries: Sequence[DecryptedEntry]) -> List[str]:
    """
    Build the lines of an ASCII table for a list of entries.

    Columns: positional index (the value 'remove' and 'show' expect),
    title, username and creation date. Secrets are never part of the table.

    Example Output:
        #    | Title            | Username          | Created
        -------------------------------------------------------
        0    | email            | me@example.com    | 2025/01/15
    """
    if not entries:
        return ["[-] No entries found"]

    headers = ['#', 'Title', 'Username', 'Created']
    table_data = [
        [str(entry.index), entry.title[:30], entry.username[:20], format_created(entry.created)]
        for entry in entries
    ]

    # Column width = widest cell (or header) plus padding
    col_widths = []
    for i, header in enumerate(headers):
        max_width = max([len(header)] + [len(row[i]) for row in table_data])
        col_widths.append(max_width + 2)

    lines = [' | '.join(header.ljust(col_widths[i]) for i, header in enumerate(headers))]
    separator_length = sum(col_widths) + len(headers) * 3 - 1
    lines.append('-' * separator_length)
    for row in table_data:
        lines.append(' | '.join(cell.ljust(col_widths[i]) for i, cell in enumerate(row)))

    return lines


def display_entries_table(entries: Sequence[DecryptedEntry]) -> None:
    for line in render_entries_table(entries):
        print(line)


def display_skipped(skipped: Sequence[SkippedEntry]) -> None:
    """Warn about entries that could not be decrypted."""
    if not skipped:
        return
    print(f"[-] {len(skipped)} entr{'y' if len(skipped) == 1 else 'ies'} could not be decrypted:")
    for item in skipped:
        print(f"    #{item.index} {item.title}: {item.reason}")


def display_entry(entry: DecryptedEntry, show_secret: bool = True) -> None:
    """
    Display detailed information for a single entry.

    Example Output:
        ==================================================
        Entry #0
        ==================================================
        Title:       email
        Username:    me@example.com
        URL:         https://mail.example.com
        Password:    s3cr3t
        Notes:
        Created:     2025/01/15 14:30:45
        ==================================================
    """
    print("=" * 50)
    print(f"Entry #{entry.index}")
    print("=" * 50)

    print(f"Title:       {entry.title}")
    print(f"Username:    {entry.username}")
    print(f"URL:         {entry.url}")
    print(f"Password:    {entry.secret if show_secret else '*' * 8}")
    print(f"Notes:       {entry.notes}")
    print(f"Created:     {format_created(entry.created, with_time=True)}")

    print("=" * 50)

# ==============================================================================
# CLIPBOARD MANAGEMENT
# ==============================================================================

def copy_to_clipboard(text: str, timeout: int = 30) -> bool:
    """
    Copy text to system clipboard with optional auto-clear timeout.

    Args:
        text (str): The text to copy to clipboard
        timeout (int): Number of seconds after which to clear clipboard.
                      Set to 0 to disable auto-clear. Default: 30 seconds

    Returns:
        bool: True if text was successfully copied, False otherwise

    Security Features:
        - Auto-clears clipboard after timeout
        - Only clears if clipboard still contains the original text
        - Uses a daemon thread so a pending clear never blocks exit
    """
    try:
        pyperclip.copy(text)
    except pyperclip.PyperclipException as e:
        logger.warning("Clipboard unavailable: %s", e)
        print(f"[-] Clipboard error: {e}")
        return False

    if timeout > 0:
        def clear_later():
            time.sleep(timeout)
            try:
                # Only clear if it's still our text (not overwritten by user)
                if pyperclip.paste() == text:
                    pyperclip.copy("")
            except pyperclip.PyperclipException as e:
                logger.debug("Clipboard auto-clear failed: %s", e)

        threading.Thread(target=clear_later, daemon=True).start()

    return True


def clear_clipboard() -> bool:
    """Clear the system clipboard immediately."""
    try:
        pyperclip.copy("")
        return True
    except pyperclip.PyperclipException:
        return False
