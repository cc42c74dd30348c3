#!/usr/bin/env python3
"""
OTP CLI - A simple command-line TOTP manager
Usage:
    otp                         (interactive menu)
    otp add <label> <secret> [--issuer <name>]
    otp get <label|number>
    otp list
    otp watch [query]
    otp search <query>
    otp edit <number> [--label <label>] [--secret <secret>]
    otp remove <number>
    otp import <uri>
"""

import argparse
import base64
import hashlib
import hmac
import json
import logging
import os
import struct
import sys
import time
from pathlib import Path

import pyperclip

DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30
DEFAULT_ALGORITHM = "sha1"
DEFAULT_ENCODING = "base32"
REFRESH_INTERVAL = 1.0

logger = logging.getLogger("otp")
_START_TIME = time.perf_counter()


# ==================== Logging ====================

def setup_logging(debug: bool = False):
    """Configure stderr logging, verbose only with --debug"""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )


def debug_log(message: str):
    """Log a debug message with the time elapsed since start-up"""
    elapsed = (time.perf_counter() - _START_TIME) * 1000
    logger.debug("[%8.1fms] %s", elapsed, message)


# ==================== Errors ====================

class OTPError(Exception):
    """Base class for errors reported to the user"""


class InvalidSecretError(OTPError, ValueError):
    """The secret cannot be decoded into key bytes"""


class StorageError(OTPError):
    """Reading or writing the storage file failed"""


class InvalidSelectionError(OTPError):
    """An entry number is outside the stored list"""


# ==================== TOTP Implementation ====================

HASH_ALGORITHMS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def _decode_base32(text: str) -> bytes:
    text = text.upper()
    # otpauth secrets usually omit the padding
    padding = -len(text) % 8
    return base64.b32decode(text + "=" * padding)


def _decode_base64(text: str) -> bytes:
    return base64.b64decode(text, validate=True)


def _decode_ascii(text: str) -> bytes:
    return text.encode("ascii")


SECRET_ENCODINGS = {
    "base32": _decode_base32,
    "hex": bytes.fromhex,
    "base64": _decode_base64,
    "ascii": _decode_ascii,
}


def clean_secret(secret: str, encoding=DEFAULT_ENCODING) -> str:
    """Remove all whitespace from a secret, upper-casing Base32 text"""
    cleaned = "".join(secret.split())
    if encoding == "base32":
        cleaned = cleaned.upper()
    return cleaned


def decode_secret(secret, encoding=DEFAULT_ENCODING) -> bytes:
    """Decode a textual secret into raw key bytes

    ``encoding`` is one of SECRET_ENCODINGS or a callable taking the cleaned
    text and returning bytes. Bytes secrets are used as the key unchanged.
    """
    if isinstance(secret, (bytes, bytearray)):
        key = bytes(secret)
    else:
        if callable(encoding):
            decoder = encoding
        else:
            decoder = SECRET_ENCODINGS.get(str(encoding).lower())
            if decoder is None:
                raise InvalidSecretError(f"Unknown secret encoding: {encoding}")
        text = "".join(str(secret).split())
        try:
            key = decoder(text)
        except (ValueError, TypeError) as e:
            raise InvalidSecretError(f"Invalid secret key format: {e}") from e

    if not key:
        raise InvalidSecretError("Secret cannot be empty")
    return key


def _get_digest(algorithm: str):
    digest = HASH_ALGORITHMS.get(str(algorithm).lower())
    if digest is None:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")
    return digest


def hotp(key: bytes, counter: int, digits: int = DEFAULT_DIGITS, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Generate HOTP code (RFC 4226)"""
    if counter < 0:
        raise ValueError("Counter must not be negative")

    counter_bytes = struct.pack(">Q", counter)
    mac = hmac.new(key, counter_bytes, _get_digest(algorithm)).digest()

    # Dynamic truncation
    offset = mac[-1] & 0x0F
    truncated = struct.unpack(">I", mac[offset:offset + 4])[0] & 0x7FFFFFFF

    return str(truncated % (10 ** digits)).zfill(digits)


def generate_code(secret, timestamp: float = None, period: int = DEFAULT_PERIOD,
                  digits: int = DEFAULT_DIGITS, encoding=DEFAULT_ENCODING,
                  algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Generate TOTP code (RFC 6238)"""
    if not 1 <= digits <= 10:
        raise ValueError(f"Digits must be between 1 and 10, got {digits}")
    if period <= 0:
        raise ValueError(f"Period must be positive, got {period}")

    key = decode_secret(secret, encoding)
    if timestamp is None:
        timestamp = time.time()

    counter = int(timestamp // period)
    return hotp(key, counter, digits, algorithm)


def seconds_remaining(timestamp: float = None, period: int = DEFAULT_PERIOD) -> int:
    """Seconds until the next code rotation, always within [1, period]"""
    if period <= 0:
        raise ValueError(f"Period must be positive, got {period}")
    if timestamp is None:
        timestamp = time.time()
    return period - (int(timestamp // 1) % period)


def entry_code(entry: dict, timestamp: float = None) -> str:
    """Current code for a stored entry"""
    return generate_code(
        entry["secret"],
        timestamp,
        period=entry.get("period", DEFAULT_PERIOD),
        digits=entry.get("digits", DEFAULT_DIGITS),
        encoding=entry.get("encoding", DEFAULT_ENCODING),
        algorithm=entry.get("algorithm", DEFAULT_ALGORITHM),
    )


# ==================== Storage ====================

def get_storage_path() -> Path:
    """Get the path to the storage file"""
    override = os.environ.get("OTP_CLI_FILE")
    if override:
        return Path(override).expanduser()

    # Use XDG_DATA_HOME or fallback to ~/.local/share
    xdg_data = os.environ.get("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
    return Path(xdg_data) / "otp-cli" / "entries.json"


def _normalise_entry(raw) -> dict:
    if not isinstance(raw, dict) or not raw.get("label") or not raw.get("secret"):
        raise StorageError(f"Malformed entry in storage file: {raw!r}")

    try:
        entry = {
            "label": str(raw["label"]),
            "secret": str(raw["secret"]),
            "issuer": str(raw.get("issuer") or ""),
            "digits": int(raw.get("digits", DEFAULT_DIGITS)),
            "period": int(raw.get("period", DEFAULT_PERIOD)),
            "algorithm": str(raw.get("algorithm", DEFAULT_ALGORITHM)).lower(),
            "encoding": str(raw.get("encoding", DEFAULT_ENCODING)).lower(),
            "added": str(raw.get("added", "-")),
        }
    except (TypeError, ValueError) as e:
        raise StorageError(f"Malformed entry '{raw.get('label')}': {e}") from e

    if entry["period"] <= 0 or not 1 <= entry["digits"] <= 10:
        raise StorageError(f"Malformed entry '{entry['label']}': bad digits or period")
    return entry


def load_entries(path=None) -> list:
    """Load entries from storage, oldest first"""
    storage_path = Path(path) if path else get_storage_path()
    debug_log(f"Loading entries from {storage_path}")

    try:
        with open(storage_path, "r", encoding="utf-8") as f:
            stored = json.load(f)
    except FileNotFoundError:
        return []
    except (OSError, ValueError) as e:
        raise StorageError(f"Could not read {storage_path}: {e}") from e

    # Older data files are a bare list of {label, secret}
    if isinstance(stored, list):
        raw_entries = stored
    elif isinstance(stored, dict) and isinstance(stored.get("entries"), list):
        raw_entries = stored["entries"]
    else:
        raise StorageError(f"Unrecognised storage format in {storage_path}")

    entries = [_normalise_entry(raw) for raw in raw_entries]
    debug_log(f"Loaded {len(entries)} entries")
    return entries


def save_entries(entries: list, path=None):
    """Save entries to storage"""
    storage_path = Path(path) if path else get_storage_path()
    debug_log(f"Saving {len(entries)} entries to {storage_path}")

    try:
        storage_path.parent.mkdir(parents=True, exist_ok=True)
        with open(storage_path, "w", encoding="utf-8") as f:
            json.dump({"entries": entries}, f, indent=2)

        # Set restrictive permissions
        os.chmod(storage_path, 0o600)
    except OSError as e:
        raise StorageError(f"Could not write {storage_path}: {e}") from e


def make_entry(label: str, secret: str, digits: int = DEFAULT_DIGITS, period: int = DEFAULT_PERIOD,
               algorithm: str = DEFAULT_ALGORITHM, encoding: str = DEFAULT_ENCODING,
               issuer: str = "") -> dict:
    """Build a validated entry, ready to be stored"""
    label = (label or "").strip()
    if not label:
        raise ValueError("Label cannot be empty.")

    secret = clean_secret(secret or "", encoding)
    if not secret:
        raise InvalidSecretError("Secret cannot be empty.")

    algorithm = algorithm.lower()
    # Validate by generating a code once
    generate_code(secret, 0, period, digits, encoding, algorithm)

    return {
        "label": label,
        "secret": secret,
        "issuer": (issuer or "").strip(),
        "digits": digits,
        "period": period,
        "algorithm": algorithm,
        "encoding": encoding,
        "added": time.strftime("%Y-%m-%d %H:%M:%S"),
    }


def get_entry(entries: list, index: int) -> dict:
    """Return the entry at a 0-based position"""
    if not isinstance(index, int) or not 0 <= index < len(entries):
        raise InvalidSelectionError(f"Invalid key selection: {_position(index)}")
    return entries[index]


def _position(index) -> str:
    return str(index + 1) if isinstance(index, int) else repr(index)


def parse_selection(choice: str, entries: list) -> int:
    """Turn a 1-based number typed by the user into a 0-based index"""
    try:
        index = int(str(choice).strip()) - 1
    except ValueError:
        raise InvalidSelectionError(f"Invalid key selection: {choice!r}") from None
    get_entry(entries, index)
    return index


def remove_entry(entries: list, index: int) -> dict:
    """Remove the entry at a 0-based position, shifting later entries down"""
    get_entry(entries, index)
    return entries.pop(index)


def edit_entry(entries: list, index: int, label: str = None, secret: str = None,
               digits: int = None, period: int = None, issuer: str = None) -> dict:
    """Replace fields of an entry; the list is untouched if validation fails"""
    current = get_entry(entries, index)

    updated = make_entry(
        current["label"] if label is None else label,
        current["secret"] if secret is None else secret,
        digits=current["digits"] if digits is None else digits,
        period=current["period"] if period is None else period,
        algorithm=current["algorithm"],
        encoding=current["encoding"],
        issuer=current["issuer"] if issuer is None else issuer,
    )
    updated["added"] = current["added"]
    entries[index] = updated
    return updated


def search_entries(entries: list, query: str) -> list:
    """Find (index, entry) pairs whose label or issuer contains the query"""
    needle = (query or "").strip().lower()
    return [
        (index, entry)
        for index, entry in enumerate(entries)
        if needle in entry["label"].lower() or needle in entry.get("issuer", "").lower()
    ]


def resolve_entry(entries: list, query: str) -> tuple:
    """Pick exactly one entry by number, exact label, or unique label fragment"""
    query = query.strip()
    if query.isdigit():
        index = parse_selection(query, entries)
        return index, entries[index]

    matches = search_entries(entries, query)
    exact = [m for m in matches if m[1]["label"].lower() == query.lower()]
    if len(exact) == 1:
        return exact[0]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise InvalidSelectionError(f"No key matching '{query}'")
    raise InvalidSelectionError(f"'{query}' matches {len(matches)} keys, use its number instead")


# ==================== Import ====================

def parse_protobuf_varint(data: bytes, offset: int) -> tuple:
    """Parse a protobuf varint and return (value, new_offset)"""
    result = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise ValueError("Truncated migration payload")
        byte = data[offset]
        result |= (byte & 0x7F) << shift
        offset += 1
        if not (byte & 0x80):
            return result, offset
        shift += 7


def _iter_protobuf_fields(data: bytes):
    """Yield (field_number, wire_type, value) for varint and length-delimited fields"""
    offset = 0
    while offset < len(data):
        tag, offset = parse_protobuf_varint(data, offset)
        field_number, wire_type = tag >> 3, tag & 0x07

        if wire_type == 0:
            value, offset = parse_protobuf_varint(data, offset)
        elif wire_type == 2:
            length, offset = parse_protobuf_varint(data, offset)
            if offset + length > len(data):
                raise ValueError("Truncated migration payload")
            value = data[offset:offset + length]
            offset += length
        else:
            return
        yield field_number, wire_type, value


def parse_otp_parameters(data: bytes) -> dict:
    """Parse a single OtpParameters message from a migration payload"""
    entry = {"issuer": "", "name": "", "algorithm": "sha1", "digits": DEFAULT_DIGITS, "type": "TOTP"}

    for field_number, wire_type, value in _iter_protobuf_fields(data):
        if wire_type == 2:
            if field_number == 1:
                entry["secret"] = base64.b32encode(value).decode().rstrip("=")
            elif field_number == 2:
                entry["name"] = value.decode("utf-8", errors="replace")
            elif field_number == 3:
                entry["issuer"] = value.decode("utf-8", errors="replace")
        elif field_number == 4:
            entry["algorithm"] = {1: "sha1", 2: "sha256", 3: "sha512"}.get(value, "sha1")
        elif field_number == 5:
            entry["digits"] = {1: 6, 2: 8}.get(value, DEFAULT_DIGITS)
        elif field_number == 6:
            entry["type"] = {1: "HOTP", 2: "TOTP"}.get(value, "TOTP")

    return entry if entry.get("secret") else None


def parse_migration_payload(data: bytes) -> list:
    """Parse Google Authenticator migration protobuf payload"""
    entries = []
    for field_number, wire_type, value in _iter_protobuf_fields(data):
        if field_number == 1 and wire_type == 2:
            entry = parse_otp_parameters(value)
            if entry:
                entries.append(entry)
    return entries


def parse_otpauth_uri(uri: str) -> dict:
    """Parse a standard otpauth://totp/ URI"""
    from urllib.parse import parse_qs, unquote, urlparse

    if not uri.startswith("otpauth://totp/"):
        raise ValueError("Expected an otpauth://totp/ URI")

    parsed = urlparse(uri)
    params = parse_qs(parsed.query)

    secret = params.get("secret", [""])[0]
    if not secret:
        raise InvalidSecretError("No secret parameter found in URI")

    # Label is "issuer:account" or just "account"
    label = unquote(parsed.path.lstrip("/"))
    if ":" in label:
        issuer_from_label, name = label.split(":", 1)
    else:
        issuer_from_label, name = "", label

    try:
        digits = int(params.get("digits", [DEFAULT_DIGITS])[0])
        period = int(params.get("period", [DEFAULT_PERIOD])[0])
    except ValueError as e:
        raise ValueError(f"Invalid otpauth parameter: {e}") from e

    return {
        "secret": secret.upper(),
        "name": name.strip(),
        "issuer": params.get("issuer", [issuer_from_label])[0].strip(),
        "algorithm": params.get("algorithm", [DEFAULT_ALGORITHM])[0].lower(),
        "digits": digits,
        "period": period,
        "type": "TOTP",
    }


def entries_from_uri(uri: str) -> list:
    """Build storable entries from an otpauth:// or otpauth-migration:// URI"""
    from urllib.parse import parse_qs, unquote, urlparse

    uri = uri.strip()
    if uri.startswith("otpauth-migration://"):
        params = parse_qs(urlparse(uri).query)
        if "data" not in params:
            raise ValueError("No data parameter found in URI")
        try:
            payload = base64.b64decode(unquote(params["data"][0]))
        except ValueError as e:
            raise ValueError(f"Error decoding data: {e}") from e
        found = parse_migration_payload(payload)
    elif uri.startswith("otpauth://"):
        found = [parse_otpauth_uri(uri)]
    else:
        raise ValueError("Expected an otpauth:// or otpauth-migration:// URI")

    entries = []
    for item in found:
        if item["type"] != "TOTP":
            debug_log(f"Skipping {item['type']} entry '{item['name']}'")
            continue
        label = item["name"] or item["issuer"] or f"imported-{len(entries) + 1}"
        entries.append(make_entry(
            label,
            item["secret"],
            digits=item["digits"],
            period=item.get("period", DEFAULT_PERIOD),
            algorithm=item["algorithm"],
            issuer=item["issuer"],
        ))
    return entries


# ==================== Output ====================

def print_entries(entries: list, numbered=None):
    """Print a numbered list of labels"""
    pairs = numbered if numbered is not None else list(enumerate(entries))
    for index, entry in pairs:
        issuer = f" ({entry['issuer']})" if entry.get("issuer") else ""
        print(f"{index + 1}. {entry['label']}{issuer}")


def run_live_display(entries: list, interval: float = REFRESH_INTERVAL, read_key=None,
                     footer: str = "\nPress Enter to return to the menu..."):
    """Refresh codes on screen until the user presses a return key"""
    from otp_watch import TerminalRenderer, start_display, watch_keypress

    session = start_display(entries, TerminalRenderer(footer=footer), interval=interval)
    if not session.running:
        return session

    try:
        watch_keypress(session, read_key=read_key)
    except KeyboardInterrupt:
        debug_log("Live display interrupted")
    finally:
        session.cancel()
        session.join()
    return session


# ==================== Commands ====================

def cmd_add(args):
    """Add a new OTP secret"""
    entry = make_entry(
        args.label,
        args.secret,
        digits=args.digits,
        period=args.period,
        algorithm=args.algorithm,
        issuer=args.issuer or "",
    )
    entries = load_entries(args.file)
    entries.append(entry)
    save_entries(entries, args.file)
    print(f"✓ Added '{entry['label']}' as #{len(entries)}")


def cmd_get(args):
    """Get OTP code for a label or number"""
    entries = load_entries(args.file)
    _, entry = resolve_entry(entries, args.query)

    now = time.time()
    code = entry_code(entry, now)
    remaining = seconds_remaining(now, entry["period"])

    clipboard_msg = ""
    if not args.no_copy:
        try:
            pyperclip.copy(code)
            clipboard_msg = " (copied to clipboard)"
        except pyperclip.PyperclipException as e:
            debug_log(f"Clipboard unavailable: {e}")

    print(f"{code}{clipboard_msg}")

    if args.verbose:
        print(f"Valid for {remaining}s")


def cmd_list(args):
    """List all stored entries"""
    entries = load_entries(args.file)

    if not entries:
        print("No 2FA keys found.")
        print("Add one with: otp add <label> <secret>")
        return

    rows = [(str(i), e["label"], e.get("issuer") or "-", e["added"]) for i, e in enumerate(entries, 1)]

    # Calculate dynamic column widths, with 4-space gap
    num_width = max(len("#"), max(len(r[0]) for r in rows)) + 2
    label_width = max(len("Label"), max(len(r[1]) for r in rows)) + 4
    issuer_width = max(len("Issuer"), max(len(r[2]) for r in rows)) + 4

    print(f"{'#':<{num_width}}{'Label':<{label_width}}{'Issuer':<{issuer_width}}{'Added'}")
    print("-" * (num_width + label_width + issuer_width + 19))

    for number, label, issuer, added in rows:
        print(f"{number:<{num_width}}{label:<{label_width}}{issuer:<{issuer_width}}{added}")


def cmd_watch(args):
    """Show live codes until Enter or q is pressed"""
    entries = load_entries(args.file)
    if args.query:
        entries = [entry for _, entry in search_entries(entries, args.query)]
    run_live_display(entries, interval=args.interval, footer="\nPress Enter or q to stop...")


def cmd_search(args):
    """Search entries by label or issuer"""
    entries = load_entries(args.file)
    matches = search_entries(entries, args.query)

    if not matches:
        print(f"No keys matching '{args.query}'")
        return

    print_entries(entries, matches)


def cmd_remove(args):
    """Remove an OTP secret"""
    entries = load_entries(args.file)
    index = parse_selection(args.index, entries)
    label = entries[index]["label"]

    if not args.force:
        confirm = input(f"Remove '{label}'? [y/N]: ")
        if confirm.lower() != 'y':
            print("Cancelled")
            return

    remove_entry(entries, index)
    save_entries(entries, args.file)
    print(f"✓ Removed '{label}'")


def cmd_edit(args):
    """Edit an existing OTP secret"""
    entries = load_entries(args.file)
    index = parse_selection(args.index, entries)

    entry = edit_entry(
        entries,
        index,
        label=args.label,
        secret=args.secret,
        digits=args.digits,
        period=args.period,
        issuer=args.issuer,
    )
    save_entries(entries, args.file)
    print(f"✓ Updated '{entry['label']}'")


def cmd_import(args):
    """Import from an otpauth:// URI or a Google Authenticator export"""
    imported = entries_from_uri(args.uri)

    if not imported:
        print("No OTP entries found in the URI")
        return

    print(f"Found {len(imported)} OTP entries:\n")
    print_entries(imported)
    print()

    if args.dry_run:
        print("Dry run - no secrets were imported")
        return

    confirm = input("Import all entries? [y/N]: ")
    if confirm.lower() != "y":
        print("Cancelled")
        return

    entries = load_entries(args.file)
    entries.extend(imported)
    save_entries(entries, args.file)
    print(f"✓ Imported {len(imported)} entries")


def cmd_menu(args):
    """Run the interactive menu"""
    run_menu(args.file, interval=args.interval)


# ==================== Interactive Menu ====================

MENU_OPTIONS = (
    ("1", "View current 2FA codes"),
    ("2", "Add a new 2FA key"),
    ("3", "Edit a 2FA key"),
    ("4", "Remove a 2FA key"),
    ("5", "Search 2FA keys"),
    ("6", "Exit"),
)


def menu_view(path=None, interval=REFRESH_INTERVAL):
    entries = load_entries(path)
    run_live_display(entries, interval=interval, read_key=input)


def menu_add(path=None, interval=REFRESH_INTERVAL):
    label = input("Enter a label for the new key: ").strip()
    if not label:
        raise ValueError("Label cannot be empty.")

    secret = input("Enter the manual 2FA secret (e.g., 4xu7 tzmk rrqc 7erc s6bc 7zeu 2gcj gph3): ")
    entry = make_entry(label, secret)

    entries = load_entries(path)
    entries.append(entry)
    save_entries(entries, path)
    print(f"New 2FA key added for {entry['label']}:")
    print(f"Secret: {entry['secret']}")


def menu_edit(path=None, interval=REFRESH_INTERVAL):
    entries = load_entries(path)
    if not entries:
        print("No keys to edit.")
        return

    print("\nSelect a key to edit:")
    print_entries(entries)
    index = parse_selection(input("Enter the number of the key to edit: "), entries)
    current = entries[index]

    label = input(f"New label (leave blank to keep '{current['label']}'): ").strip()
    secret = input("New secret (leave blank to keep the current one): ").strip()

    entry = edit_entry(entries, index, label=label or None, secret=secret or None)
    save_entries(entries, path)
    print(f"Updated 2FA key: {entry['label']}")


def menu_remove(path=None, interval=REFRESH_INTERVAL):
    entries = load_entries(path)
    if not entries:
        print("No keys to remove.")
        return

    print("\nSelect a key to remove:")
    print_entries(entries)
    index = parse_selection(input("Enter the number of the key to remove: "), entries)

    removed = remove_entry(entries, index)
    save_entries(entries, path)
    print(f"Removed 2FA key: {removed['label']}")


def menu_search(path=None, interval=REFRESH_INTERVAL):
    query = input("Search for: ")
    entries = load_entries(path)
    matches = search_entries(entries, query)

    if not matches:
        print(f"No keys matching '{query.strip()}'")
        return

    now = time.time()
    for index, entry in matches:
        try:
            code = entry_code(entry, now)
        except ValueError as e:
            code = f"error: {e}"
        print(f"{index + 1}. {entry['label']}: {code}")


MENU_ACTIONS = {
    "1": menu_view,
    "2": menu_add,
    "3": menu_edit,
    "4": menu_remove,
    "5": menu_search,
}


def show_menu():
    print()
    for key, text in MENU_OPTIONS:
        print(f"{key}. {text}")


def run_menu(path=None, interval: float = REFRESH_INTERVAL):
    """Menu loop; every failure is reported and control returns here"""
    print("2FA Manager")

    while True:
        show_menu()
        try:
            choice = input("Select an option: ").strip()
        except EOFError:
            print()
            return

        if choice == "6":
            return

        action = MENU_ACTIONS.get(choice)
        if action is None:
            print("Invalid choice.")
            continue

        debug_log(f"Menu action {choice}")
        try:
            action(path, interval)
        except (OTPError, ValueError) as e:
            print(f"Error: {e}")
        except EOFError:
            print()
            return


# ==================== Main ====================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="otp",
        description="OTP CLI - A simple command-line TOTP manager",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging with timing")
    parser.add_argument("--file", "-F", help="Storage file (default: $OTP_CLI_FILE or XDG data dir)")
    parser.set_defaults(interval=REFRESH_INTERVAL)
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Add command
    add_parser = subparsers.add_parser("add", help="Add a new OTP secret")
    add_parser.add_argument("label", help="Label for the secret")
    add_parser.add_argument("secret", help="Base32 encoded secret key")
    add_parser.add_argument("--issuer", "-i", help="Issuer name (e.g., GitHub)")
    add_parser.add_argument("--digits", "-d", type=int, default=DEFAULT_DIGITS, help="Number of digits (default: 6)")
    add_parser.add_argument("--period", "-p", type=int, default=DEFAULT_PERIOD, help="Time period in seconds (default: 30)")
    add_parser.add_argument("--algorithm", "-a", choices=sorted(HASH_ALGORITHMS), default=DEFAULT_ALGORITHM,
                            help="HMAC hash algorithm (default: sha1)")

    # Get command
    get_parser = subparsers.add_parser("get", help="Get OTP code")
    get_parser.add_argument("query", help="Label or number of the secret")
    get_parser.add_argument("--verbose", "-v", action="store_true", help="Show time remaining")
    get_parser.add_argument("--no-copy", action="store_true", help="Do not copy the code to the clipboard")

    # List command
    subparsers.add_parser("list", help="List all stored keys")

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Show live codes until Enter or q is pressed")
    watch_parser.add_argument("query", nargs="?", help="Only show keys matching this text")
    watch_parser.add_argument("--interval", type=float, default=REFRESH_INTERVAL, help="Refresh interval in seconds")

    # Search command
    search_parser = subparsers.add_parser("search", help="Search keys by label or issuer")
    search_parser.add_argument("query", help="Text to search for")

    # Remove command
    remove_parser = subparsers.add_parser("remove", help="Remove an OTP secret")
    remove_parser.add_argument("index", help="Number of the key to remove (see 'otp list')")
    remove_parser.add_argument("--force", "-f", action="store_true", help="Skip confirmation")

    # Edit command
    edit_parser = subparsers.add_parser("edit", help="Edit an existing OTP secret")
    edit_parser.add_argument("index", help="Number of the key to edit (see 'otp list')")
    edit_parser.add_argument("--label", "-l", help="New label")
    edit_parser.add_argument("--secret", "-s", help="New secret key")
    edit_parser.add_argument("--issuer", "-i", help="New issuer name")
    edit_parser.add_argument("--digits", "-d", type=int, help="Number of digits")
    edit_parser.add_argument("--period", "-p", type=int, help="Time period in seconds")

    # Import command
    import_parser = subparsers.add_parser("import", help="Import an otpauth:// or otpauth-migration:// URI")
    import_parser.add_argument("uri", help="otpauth:// URI or Google Authenticator export URI")
    import_parser.add_argument("--dry-run", "-n", action="store_true", help="Show what would be imported without saving")

    # Menu command
    menu_parser = subparsers.add_parser("menu", help="Interactive menu (default)")
    menu_parser.add_argument("--interval", type=float, default=REFRESH_INTERVAL, help="Refresh interval in seconds")

    return parser


COMMANDS = {
    "add": cmd_add,
    "get": cmd_get,
    "list": cmd_list,
    "watch": cmd_watch,
    "search": cmd_search,
    "remove": cmd_remove,
    "edit": cmd_edit,
    "import": cmd_import,
    "menu": cmd_menu,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.debug)
    debug_log(f"Command: {args.command or 'menu'}")

    command = COMMANDS[args.command or "menu"]
    try:
        command(args)
    except (OTPError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
