#!/usr/bin/env python3
"""
Roost Password Manager
A terminal front-end for a folder of encrypted credential databases.

Each database is a single JSON file protected by its own master password.
Entry titles are stored in plain text; secrets are encrypted with a key
derived from the master password and never written to disk.
"""

# ==============================================================================
# STANDARD LIBRARY IMPORTS
# ==============================================================================
import sys
import os
import argparse
import logging

# ==============================================================================
# THIRD-PARTY LIBRARY IMPORTS
# ==============================================================================
from prompt_toolkit import prompt
from prompt_toolkit.validation import Validator, ValidationError
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import InMemoryHistory
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory

# ==============================================================================
# CUSTOM MODULE IMPORTS
# ==============================================================================
from roostlib import crypto, ui, validation
from roostlib.config import RoostConfig, load_config
from roostlib.database import CredentialStore, DecryptedEntry
from roostlib.exceptions import (
    AlreadyExists, ConfigError, EntropyUnavailable, InvalidPassword, RoostError
)

logger = logging.getLogger("roost")

# ==============================================================================
# CONSTANTS
# ==============================================================================

BANNER = r"""
  ____                 _
 |  _ \ ___   ___  ___| |_
 | |_) / _ \ / _ \/ __| __|
 |  _ < (_) | (_) \__ \ |_
 |_| \_\___/ \___/|___/\__|
"""

MAIN_MENU_INTERACTIVE = f"""
{BANNER}
Available commands:

'list' (le)          - List entries with their index
'show INDEX' (se)    - Show one entry including its password
'add' (ae)           - Add an entry (prompts for title, password, optional fields)
'remove INDEX' (rm)  - Remove an entry (later entries move up by one)
'copy INDEX' (cp)    - Copy an entry's password to the clipboard
'help' (h)           - Show this help message
'exit' (quit, q)     - Close the database and exit

Indexes change after a removal: run 'list' again before the next one.
"""

# Command aliases (full names and abbreviations)
COMMAND_ALIASES = {
    'list': 'list',
    'show': 'show',
    'add': 'add',
    'remove': 'remove',
    'copy': 'copy',
    'help': 'help',
    'exit': 'exit',
    'quit': 'exit',

    # Abbreviations
    'le': 'list',
    'se': 'show',
    'ae': 'add',
    'rm': 'remove',
    'cp': 'copy',
    'h': 'help',
    'q': 'exit',
}

MAX_UNLOCK_ATTEMPTS = 3


class NumberValidator(Validator):
    """Validator for numeric input fields."""

    def validate(self, document):
        """Ensure input contains only digits."""
        text = document.text
        if text and not text.isdigit():
            raise ValidationError(message='Please enter a valid number')

# ==============================================================================
# MAIN ROOST CLASS
# ==============================================================================

class Roost:
    """
    Application controller: turns user input into CredentialStore calls.

    Holds at most one open session at a time and closes it in cleanup().
    """

    def __init__(self, config: RoostConfig, store: CredentialStore = None):
        self.config = config
        self.store = store or CredentialStore(config.dbs_folder)
        self.session = None         # Open database session
        self.copied = False         # Whether a secret was put on the clipboard
        self.history = InMemoryHistory()
        self.auto_suggest = AutoSuggestFromHistory()
        self.completer = WordCompleter(sorted(COMMAND_ALIASES), ignore_case=True)

    # ==========================================================================
    # COMMAND RESOLUTION
    # ==========================================================================

    def _resolve_command(self, command_input):
        """
        Resolve user input to a command name using aliases and prefix matching.

        Returns:
            str or None: Resolved command name, None if unknown or ambiguous
        """
        if not command_input:
            return None

        command_input = command_input.strip().lower()

        if command_input in COMMAND_ALIASES:
            return COMMAND_ALIASES[command_input]

        matches = sorted({COMMAND_ALIASES[cmd] for cmd in COMMAND_ALIASES
                          if cmd.startswith(command_input)})

        if len(matches) == 1:
            return matches[0]
        elif len(matches) > 1:
            print(f"[-] Ambiguous command '{command_input}'. Could be: {', '.join(matches)}")
            return None

        print(f"[-] Unknown command: '{command_input}'")
        print("[i] Type 'help' or 'h' for available commands")
        return None

    def _format_prompt(self):
        if self.session and self.session.is_open:
            name = self.session.name
            if name.endswith('.json'):
                name = name[:-5]
            return f"roost@{name}/> "
        return "roost@locked/> "

    def _read_index(self, argument):
        """Parse an index argument, prompting for one if it was not given."""
        text = (argument or "").strip()
        if not text:
            text = prompt("Entry index: ", validator=NumberValidator()).strip()
        if not text.isdigit():
            print("[-] Please enter a valid number")
            return None
        return int(text)

    def _find_entry(self, index):
        listing = self.store.list_entries(self.session)
        for entry in listing.entries:
            if entry.index == index:
                return entry
        if any(item.index == index for item in listing.skipped):
            print(f"[-] Entry #{index} could not be decrypted")
        else:
            print(f"[-] No entry with index {index}")
        return None

    # ==========================================================================
    # DATABASE MANAGEMENT
    # ==========================================================================

    def list_databases(self):
        names = self.store.list_databases()
        if not names:
            print(f"[-] No databases in {self.store.folder}")
            return
        for name in names:
            print(name[:-5] if name.endswith('.json') else name)

    def create_database(self, name, description=None):
        """
        Create a new database, prompting for the master password.

        Returns:
            bool: True if the database was created
        """
        path = self.store.database_path(name)
        if os.path.exists(path):
            print(f"[-] Database '{name}' already exists: {path}")
            print("[i] Use 'open' to access it, or choose a different name.")
            return False

        while True:
            master_pwd = prompt("Create master password: ", is_password=True)
            if not master_pwd:
                print("[-] Password required")
                continue
            confirm_pwd = prompt("Confirm master password: ", is_password=True)
            if master_pwd != confirm_pwd:
                print("[-] Passwords do not match")
                continue
            break

        try:
            kwargs = {'description': description} if description else {}
            path = self.store.create(name, master_pwd, **kwargs)
        except AlreadyExists as e:
            print(f"[-] {e}")
            return False
        finally:
            crypto.secure_erase(master_pwd)
            crypto.secure_erase(confirm_pwd)

        print(f"[+] Database created: {path}")
        return True

    def unlock_database(self, name):
        """
        Authenticate and open a database.

        Returns:
            bool: True if the database is open
        """
        path = self.store.database_path(name)
        if not os.path.exists(path):
            print(f"[-] Database not found: {path}")
            return False

        for attempt in range(1, MAX_UNLOCK_ATTEMPTS + 1):
            master_pwd = prompt("Master password: ", is_password=True)
            if not master_pwd:
                print("[-] Password required")
                continue

            print("[i] Deriving key...")
            try:
                result = self.store.open(path, master_pwd)
            except InvalidPassword:
                remaining = MAX_UNLOCK_ATTEMPTS - attempt
                print(f"[-] Invalid password. Attempts remaining: {remaining}")
                continue
            finally:
                crypto.secure_erase(master_pwd)

            self.session = result.session
            print(f"[+] Database unlocked: {self.session.name} ({len(result.entries)} entries)")
            ui.display_skipped(result.skipped)
            return True

        print("[-] Maximum authentication attempts reached")
        return False

    # ==========================================================================
    # ENTRY COMMANDS
    # ==========================================================================

    def list_entries(self):
        listing = self.store.list_entries(self.session)
        ui.display_skipped(listing.skipped)
        ui.display_entries_table(listing.entries)

    def show_entry(self, argument=None):
        index = self._read_index(argument)
        if index is None:
            return
        entry = self._find_entry(index)
        if entry:
            ui.display_entry(entry)

    def copy_entry(self, argument=None):
        index = self._read_index(argument)
        if index is None:
            return
        entry = self._find_entry(index)
        if entry and ui.copy_to_clipboard(entry.secret, timeout=self.config.clipboard_timeout):
            self.copied = True
            if self.config.clipboard_timeout:
                print(f"[+] Password copied to clipboard (will clear in {self.config.clipboard_timeout} seconds)")
            else:
                print("[+] Password copied to clipboard")

    def add_entry(self):
        title = prompt("Title: ").strip()
        secret = prompt("Password: ", is_password=True)
        username = prompt("Username (optional): ").strip()
        url = prompt("URL (optional): ").strip()
        notes = prompt("Notes (optional): ").strip()

        for notice in validation.entry_notices({'username': username, 'url': url}):
            print(f"[i] {notice}; stored as entered")

        try:
            entry = self.store.add_entry(
                self.session, title, secret,
                username=username, url=url, notes=notes
            )
        finally:
            crypto.secure_erase(secret)
        print(f"[+] Entry added: {entry.title}")

    def remove_entry(self, argument=None):
        index = self._read_index(argument)
        if index is None:
            return

        listing = self.store.list_entries(self.session)
        entry = next((e for e in listing.entries if e.index == index), None)
        skipped = next((s for s in listing.skipped if s.index == index), None)
        if entry is None and skipped is None:
            print(f"[-] No entry with index {index}")
            return

        label = entry.title if entry else f"{skipped.title} (undecryptable)"
        confirm = prompt(f"Remove '{label}'? [y/N]: ").strip().lower()
        if confirm != 'y':
            print("[i] Removal cancelled")
            return

        removed = self.store.remove_entry(self.session, index)
        print(f"[+] Entry removed: {removed.title}")
        print("[i] Indexes of later entries moved up by one")

    # ==========================================================================
    # INTERACTIVE SHELL
    # ==========================================================================

    def dispatch(self, selection):
        """
        Run one shell command line.

        Returns:
            bool: False when the shell should exit
        """
        parts = selection.split(maxsplit=1)
        command = self._resolve_command(parts[0]) if parts else None
        argument = parts[1] if len(parts) > 1 else None

        if not command:
            return True

        try:
            if command == 'help':
                print(MAIN_MENU_INTERACTIVE)
            elif command == 'list':
                self.list_entries()
            elif command == 'show':
                self.show_entry(argument)
            elif command == 'add':
                self.add_entry()
            elif command == 'remove':
                self.remove_entry(argument)
            elif command == 'copy':
                self.copy_entry(argument)
            elif command == 'exit':
                return False
        except RoostError as e:
            print(f"[-] {e}")

        return True

    def run_shell(self):
        while True:
            try:
                selection = prompt(
                    self._format_prompt(),
                    history=self.history,
                    auto_suggest=self.auto_suggest,
                    completer=self.completer,
                ).strip()
            except KeyboardInterrupt:
                print("\n[i] Press Ctrl+D to exit or type 'exit'")
                continue
            except EOFError:
                break

            if selection and not self.dispatch(selection):
                break

        print("[+] Database locked")

    def cleanup(self):
        """Close the session (scrubbing the key) and clear a copied secret."""
        if self.session:
            self.store.close(self.session)
            self.session = None
        if self.copied:
            ui.clear_clipboard()
            self.copied = False

# ==============================================================================
# MAIN ENTRY POINT
# ==============================================================================

def build_parser():
    parser = argparse.ArgumentParser(
        description="Roost keeps credentials in encrypted, per-database JSON files, "
                    "each unlocked by its own master password.",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--config', help='Settings file (default: ~/.config/roost.toml)')
    parser.add_argument('--folder', help='Database folder (overrides dbs_folder)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Available operations')

    subparsers.add_parser('list', help='List databases in the folder')

    create_parser = subparsers.add_parser('create', help='Create a new database')
    create_parser.add_argument('name', help='Database name (stored as NAME.json)')
    create_parser.add_argument('--description', help='Free-text description')

    open_parser = subparsers.add_parser('open', help='Unlock a database for interactive management')
    open_parser.add_argument('name', help='Database name')

    return parser


def main(argv=None):
    """Main entry point for the Roost password manager."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[-] {e}")
        return 1

    if args.folder:
        config.dbs_folder = os.path.expanduser(args.folder)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    roost = Roost(config)

    try:
        if args.command == 'list':
            roost.list_databases()
        elif args.command == 'create':
            if not roost.create_database(args.name, args.description):
                return 1
        elif args.command == 'open':
            if not roost.unlock_database(args.name):
                return 1
            print("[i] Type 'help' for available commands")
            roost.run_shell()
    except EntropyUnavailable as e:
        logger.critical("%s", e)
        print(f"[-] Fatal: {e}")
        return 2
    except RoostError as e:
        print(f"[-] {e}")
        return 1
    except (KeyboardInterrupt, EOFError):
        print("\n[-] Operation terminated and database locked.")
        return 130
    finally:
        roost.cleanup()

    return 0


if __name__ == "__main__":
    sys.exit(main())
