#!/usr/bin/env python3
# Author: hamb0n-3

import argparse
import getpass
import json
import logging
import subprocess
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

try:
    import pymssql
except ImportError:
    print("Error: The 'pymssql' package is required. Please install it with 'pip install pymssql'", file=sys.stderr)
    sys.exit(1)

try:
    import pandas as pd
except ImportError:
    print("Error: The 'pandas' package is required. Please install it with 'pip install pandas'", file=sys.stderr)
    sys.exit(1)


###############################################################################
# ----------------------------- Helper utilities ----------------------------- #
###############################################################################

DEFAULT_FUZZ_NUM = 300
DEFAULT_BOGUS_DB = "NOTAREALDATABASE1234ABCD"
SYSTEM_MARKER = "##"
ALTER_LOGIN_SIGNATURE = "alter the login"
AUTH_SQL = "sql"
AUTH_INTEGRATED = "integrated"
DOMAIN_SEPARATOR = "\\"
DBLIB_ERROR_BASE = 20000
STATUS_ICONS = {"success": "[+]", "error": "[-]", "info": "[*]"}


class EnumError(Exception):
    """Base class for failures that end a run."""
    label = "Error"


class ConfigurationError(EnumError):
    label = "Configuration error"


class ConnectivityError(EnumError):
    label = "Connection failed"


class ProbeError(EnumError):
    label = "Probe failed"


def split_csv(raw: str | None) -> List[str]:
    return [s.strip() for s in raw.split(",") if s.strip()] if raw else []

def read_file_lines(filepath: str | None) -> List[str]:
    if not filepath: return []
    try:
        return [line.strip() for line in Path(filepath).read_text().splitlines() if line.strip()]
    except FileNotFoundError:
        raise ConfigurationError(f"File not found: {filepath}")

def status(msg: str, kind: str = "info"):
    print(f"{STATUS_ICONS.get(kind, '[*]')} {msg}", flush=True)

def error_code(exc: BaseException) -> Optional[int]:
    code = exc.args[0] if exc.args else None
    return code if isinstance(code, int) else None

def error_message(exc: BaseException) -> str:
    """Returns the server text of a pymssql error, which carries (code, bytes) args."""
    if len(exc.args) >= 2 and isinstance(exc.args[1], (bytes, str)):
        msg = exc.args[1]
        if isinstance(msg, bytes): msg = msg.decode("utf-8", errors="replace")
        return msg.strip()
    return str(exc).strip()

def parse_target(target: str | None) -> Tuple[str, Optional[int]]:
    """Splits 'host', 'host,port' or 'host:port' into (server, port)."""
    target = (target or "").strip()
    if not target:
        raise ConfigurationError("No target server given. Use -d/--target.")
    host, port = target, None
    if "," in target:
        host, port = target.rsplit(",", 1)
    elif target.count(":") == 1:
        host, port = target.split(":", 1)
    if port is None:
        return host, None
    if not port.strip().isdigit() or not host.strip():
        raise ConfigurationError(f"Bad target format: '{target}'. Expected host[,port].")
    return host.strip(), int(port)

def normalize_cache_target(target: str) -> str:
    # cmdkey wants host:port, SQL Server clients write host,port
    return target.strip().replace(",", ":")

def parse_credential(tok: str | None) -> Tuple[Optional[str], Optional[str]]:
    if not tok: return None, None
    user, sep, pw = tok.partition(":")
    return (user or None), (pw if sep else None)

def validate_bound(bound) -> int:
    if isinstance(bound, bool) or not isinstance(bound, int) or bound <= 0:
        raise ConfigurationError(f"Fuzz bound must be a positive integer, got {bound!r}.")
    return bound

###############################################################################
# ------------------------- Connection provisioning -------------------------- #
###############################################################################

@dataclass(frozen=True)
class ConnectionDescriptor:
    server: str
    port: Optional[int]
    auth_mode: str
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    timeout: int = 0

    @property
    def login(self) -> Optional[str]:
        """The user actually handed to the driver, None for the ambient identity."""
        return self.user if self.user and self.password is not None else None

    @property
    def address(self) -> str:
        return f"{self.server},{self.port}" if self.port else self.server

    def connect(self):
        """Opens a new driver connection. Callers own closing it."""
        kwargs = {"server": self.server, "autocommit": True}
        if self.port: kwargs["port"] = str(self.port)
        # FreeTDS negotiates NTLM when a DOMAIN\user pair is handed over
        if self.login:
            kwargs["user"], kwargs["password"] = self.login, self.password
        if self.timeout:
            kwargs["timeout"], kwargs["login_timeout"] = self.timeout, self.timeout
        return pymssql.connect(**kwargs)


class CredentialCache:
    """Process-wide OS credential store used for integrated authentication."""

    def register(self, target: str, user: str, password: str | None): raise NotImplementedError

    def deregister(self, target: str): raise NotImplementedError


class NullCredentialCache(CredentialCache):
    def register(self, target, user, password):
        logging.info("No OS credential cache on this platform; '%s' is handed to the driver directly.", user)

    def deregister(self, target):
        pass


class CmdKeyCredentialCache(CredentialCache):
    """Windows credential manager entries through cmdkey.exe."""

    def __init__(self, executable: str = "cmdkey", timeout: int = 30):
        self.executable = executable
        self.timeout = timeout

    def _run(self, args: List[str]) -> Tuple[int, str]:
        try:
            result = subprocess.run([self.executable] + args, capture_output=True, text=True, timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            return -1, str(exc)
        return result.returncode, (result.stdout + result.stderr).strip()

    def register(self, target, user, password):
        args = [f"/add:{target}", f"/user:{user}"]
        if password is not None: args.append(f"/pass:{password}")
        rc, out = self._run(args)
        if rc != 0:
            logging.warning("cmdkey could not register '%s' for %s: %s", target, user, out)
        else:
            logging.info("Registered credential-cache entry for %s as %s.", target, user)

    def deregister(self, target):
        rc, out = self._run([f"/delete:{target}"])
        if rc != 0:
            logging.debug("cmdkey delete for '%s' returned %d: %s", target, rc, out)
        else:
            logging.info("Removed credential-cache entry for %s.", target)


def default_credential_cache() -> CredentialCache:
    return CmdKeyCredentialCache() if sys.platform == "win32" else NullCredentialCache()

def build_descriptor(target: str | None, user: str | None = None, password: str | None = None,
                     timeout: int = 0) -> ConnectionDescriptor:
    server, port = parse_target(target)
    if user and password is not None and DOMAIN_SEPARATOR not in user:
        return ConnectionDescriptor(server, port, AUTH_SQL, user, password, timeout)
    return ConnectionDescriptor(server, port, AUTH_INTEGRATED, user, password, timeout)

def check_connectivity(conn: ConnectionDescriptor):
    mode = "SQL login" if conn.auth_mode == AUTH_SQL else "integrated auth"
    who = conn.login or "current identity"
    try:
        conn.connect().close()
    except pymssql.Error as exc:
        status(f"Could not connect to {conn.address} as {who} ({mode}): {error_message(exc)}", "error")
        raise ConnectivityError(error_message(exc)) from exc
    status(f"Connected to {conn.address} as {who} ({mode})", "success")

@contextmanager
def provision(target: str | None, user: str | None = None, password: str | None = None,
              cache: CredentialCache | None = None, timeout: int = 0) -> Iterator[ConnectionDescriptor]:
    """
    Builds the descriptor, checks the server answers, and yields it.
    A DOMAIN\\user login gets a credential-cache entry for the whole block.
    """
    conn = build_descriptor(target, user, password, timeout)
    cache_target = None
    if conn.auth_mode == AUTH_INTEGRATED and user and DOMAIN_SEPARATOR in user:
        cache = cache or default_credential_cache()
        cache_target = normalize_cache_target(conn.address)
        cache.register(cache_target, user, password)
    try:
        check_connectivity(conn)
        yield conn
    finally:
        if cache_target is not None:
            try:
                cache.deregister(cache_target)
            except Exception as exc:
                logging.warning("Failed to remove credential-cache entry for %s: %s", cache_target, exc)

@contextmanager
def open_connection(conn: ConnectionDescriptor, phase: str):
    try:
        db = conn.connect()
    except pymssql.Error as exc:
        raise ConnectivityError(f"{phase}: {error_message(exc)}") from exc
    with db:
        with db.cursor() as cur:
            yield cur

###############################################################################
# ----------------------- Login fuzzing & deduplication ---------------------- #
###############################################################################

def fuzz(conn: ConnectionDescriptor, bound: int = DEFAULT_FUZZ_NUM, skip_errors: bool = False) -> List[Optional[str]]:
    """Resolves SUSER_NAME(1..bound) over a single connection, in probe order."""
    bound = validate_bound(bound)
    status(f"Fuzzing principal ids 1-{bound} with SUSER_NAME()")
    raw: List[Optional[str]] = []
    with open_connection(conn, "fuzzing") as cur:
        for principal_id in range(1, bound + 1):
            try:
                cur.execute("SELECT SUSER_NAME(%d) AS name", (int(principal_id),))
                row = cur.fetchone()
            except pymssql.Error as exc:
                if not skip_errors:
                    raise ProbeError(f"SUSER_NAME({principal_id}): {error_message(exc)}") from exc
                logging.warning("Probe for id %d failed, skipping: %s", principal_id, error_message(exc))
                row = None
            name = row[0] if row else None
            if name: logging.debug("id %d -> %s", principal_id, name)
            raw.append(name)
    logging.info("Sweep finished: %d of %d ids resolved to a name.", sum(1 for n in raw if n), bound)
    return raw

def reduce(raw: Iterable[Optional[str]], marker: str = SYSTEM_MARKER) -> set[str]:
    """Unique, non-empty names without the system marker."""
    return {name for name in raw if name and name.strip() and marker not in name}

###############################################################################
# --------------------------- Error-oracle checks ---------------------------- #
###############################################################################

def default_signatures(bogus_db: str = DEFAULT_BOGUS_DB) -> List[str]:
    return [bogus_db, ALTER_LOGIN_SIGNATURE]

def matches_signature(message: str, signatures: Iterable[str]) -> bool:
    text = message.lower()
    return any(sig.lower() in text for sig in signatures if sig)

def validate(conn: ConnectionDescriptor, candidates: Iterable[str], signatures: Iterable[str] | None = None,
             bogus_db: str = DEFAULT_BOGUS_DB) -> List[str]:
    """
    Confirms candidates by pointing their default database at one that cannot exist.
    Only a recognised failure message confirms a login; a call that succeeds does not.
    """
    signatures = list(signatures) if signatures is not None else default_signatures(bogus_db)
    ordered = sorted(set(candidates))
    status(f"Verifying {len(ordered)} candidate login(s) with sp_defaultdb")
    verified: List[str] = []
    with open_connection(conn, "verification") as cur:
        for name in ordered:
            try:
                cur.execute("EXEC sp_defaultdb %s, %s", (name, bogus_db))
            except pymssql.Error as exc:
                msg = error_message(exc)
                code = error_code(exc)
                if matches_signature(msg, signatures):
                    logging.info("Confirmed login '%s': %s", name, msg)
                    verified.append(name)
                elif code is not None and code >= DBLIB_ERROR_BASE:
                    # client-side DB-Lib error, the link itself is suspect
                    logging.warning("Driver error while checking '%s' (code %d), counted as rejected: %s", name, code, msg)
                else:
                    logging.debug("Rejected '%s': %s", name, msg)
                continue
            logging.warning("sp_defaultdb succeeded for '%s'; not counted as confirmation.", name)
    return verified

###############################################################################
# -------------------------------- Reporting --------------------------------- #
###############################################################################

def build_frame(names: Iterable[str], verified: bool = True) -> pd.DataFrame:
    df = pd.DataFrame({"login": sorted(names)}, columns=["login"])
    if not verified: df["verified"] = False
    return df

def write_excel(df: pd.DataFrame, path: Path):
    with pd.ExcelWriter(path) as xl:
        df.to_excel(xl, sheet_name="logins", index=False)

def write_csv(df: pd.DataFrame, path: Path):
    df.to_csv(path, index=False)

def write_json(df: pd.DataFrame, path: Path):
    path.write_text(json.dumps(df.to_dict(orient="records"), indent=2, default=str), encoding="utf-8")

def dump_outputs(df: pd.DataFrame, stem: str, outdir: Path, formats: Iterable[str]) -> List[Path]:
    formats = list(formats)
    if not formats: return []
    outdir.mkdir(parents=True, exist_ok=True)
    written = []
    if "excel" in formats: written.append(outdir / f"{stem}.xlsx"); write_excel(df, written[-1])
    if "csv" in formats: written.append(outdir / f"{stem}.csv"); write_csv(df, written[-1])
    if "json" in formats: written.append(outdir / f"{stem}.json"); write_json(df, written[-1])
    return written

def report(names: List[str], verified: bool = True) -> pd.DataFrame:
    df = build_frame(names, verified)
    label = "verified" if verified else "unverified candidate"
    status(f"Found {len(df)} {label} login(s)", "success" if len(df) else "info")
    print(df.to_string(index=False) if not df.empty else "(No logins found)")
    return df

###############################################################################
# ----------------------- Main Logic Controllers ----------------------------- #
###############################################################################

def confirm_verification(count: int, target: str, assume_yes: bool = False) -> bool:
    if assume_yes: return True
    print(f"\n[OPSEC] About to run sp_defaultdb against {count} login(s) on {target}.")
    print("    Every call is an ALTER LOGIN attempt and may be audited.")
    try:
        sys.stdout.flush()
        if not sys.stdout.isatty():
            print("Non-interactive session detected. Skipping verification (use -y to allow it).")
            logging.warning("Non-interactive session. Verification skipped for '%s'.", target)
            return False
        confirm = input("    > Do you want to proceed? (y/N): ").strip().lower()
    except EOFError:
        print("\nConfirmation cancelled.")
        return False
    return confirm == "y"

def build_signatures(args) -> List[str]:
    extra = [s for raw in (args.signature or []) for s in split_csv(raw)]
    extra.extend(read_file_lines(args.signatures_file))
    base = [] if args.replace_signatures else default_signatures(args.bogus_db)
    signatures = list(dict.fromkeys(base + extra))
    if not signatures:
        raise ConfigurationError("No failure signatures left to match (--replace-signatures without --signature).")
    return signatures

def run(args, cache: CredentialCache | None = None) -> Tuple[List[str], bool]:
    """Runs the sweep and the oracle pass; returns (names, whether they passed the oracle)."""
    bound = validate_bound(args.fuzz_num)
    user, password = parse_credential(args.c)
    if user and password is None and args.ask_pass:
        password = getpass.getpass(f"Enter password for {user}@{args.target}: ")
    if user and password is None and DOMAIN_SEPARATOR not in user:
        raise ConfigurationError(f"Password missing for '{user}'. Use 'user:pw' format or provide -P/--ask-pass.")
    signatures = build_signatures(args) if not args.no_verify else []

    with provision(args.target, user, password, cache=cache, timeout=args.timeout) as conn:
        raw = fuzz(conn, bound, skip_errors=args.skip_probe_errors)
        candidates = reduce(raw)
        logging.info("%d unique candidate(s) after filtering.", len(candidates))
        if args.no_verify:
            report(sorted(candidates), verified=False)
            return sorted(candidates), False
        if not candidates:
            report([])
            return [], True
        if not confirm_verification(len(candidates), conn.address, args.yes):
            logging.warning("Verification declined; reporting unverified candidates.")
            report(sorted(candidates), verified=False)
            return sorted(candidates), False
        verified = validate(conn, candidates, signatures, args.bogus_db)
        report(verified)
        return verified, True

###############################################################################
# ---------------------------- CLI & main driver ---------------------------- #
###############################################################################

def positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: '{raw}'")
    if value <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return value

def non_negative_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: '{raw}'")
    if value < 0:
        raise argparse.ArgumentTypeError("must not be negative")
    return value

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="SQL Server login enumerator (SUSER_NAME fuzzing + sp_defaultdb oracle).", formatter_class=argparse.RawTextHelpFormatter)
    conn_group = p.add_argument_group("Connection")
    conn_group.add_argument("-d", "--target", metavar="server", help="Target server: host, host,port or host\\instance")
    conn_group.add_argument("-c", metavar="pair", help="Login: user[:pw]. DOMAIN\\user uses integrated auth.")
    conn_group.add_argument("-P", "--ask-pass", action="store_true", help="Prompt for the password interactively.")
    conn_group.add_argument("--timeout", type=non_negative_int, default=0, help="Login/query timeout in seconds (0 = driver default)")
    fuzz_group = p.add_argument_group("Fuzzing")
    fuzz_group.add_argument("-n", "--fuzz-num", type=positive_int, default=DEFAULT_FUZZ_NUM, help=f"Highest principal id to probe. Default: {DEFAULT_FUZZ_NUM}")
    fuzz_group.add_argument("--skip-probe-errors", action="store_true", help="Keep sweeping when a single SUSER_NAME probe fails.")
    verify_group = p.add_argument_group("Verification")
    verify_group.add_argument("--no-verify", action="store_true", help="Skip the sp_defaultdb oracle and report raw candidates.")
    verify_group.add_argument("--bogus-db", default=DEFAULT_BOGUS_DB, help=f"Nonexistent database name. Default: {DEFAULT_BOGUS_DB}")
    verify_group.add_argument("--signature", action="append", metavar="text", help="Extra failure text that confirms a login (repeatable, comma-separated)")
    verify_group.add_argument("--signatures-file", help="File with one confirming failure text per line.")
    verify_group.add_argument("--replace-signatures", action="store_true", help="Drop the built-in signatures, use only the ones given.")
    verify_group.add_argument("-y", "--yes", action="store_true", help="Do not ask before running sp_defaultdb (AUDITED!)")
    out_group = p.add_argument_group("Output")
    out_group.add_argument("-o", "--output", default="", help="Formats: csv,json,excel")
    out_group.add_argument("-O", "--outdir", default=".", help="Directory for result files")
    p.add_argument("-L", "--log-file", help="Save verbose output to a log file.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v for INFO, -vv for DEBUG)")
    return p

def main(argv: List[str] | None = None):
    args = build_parser().parse_args(argv)
    log_level = logging.INFO if args.verbose == 1 else (logging.DEBUG if args.verbose >= 2 else logging.WARNING)
    log_handlers = [logging.StreamHandler(sys.stdout)]
    if args.log_file:
        try:
            log_handlers.append(logging.FileHandler(args.log_file))
        except (IOError, OSError) as e:
            print(f"Error: Could not open log file '{args.log_file}'. {e}", file=sys.stderr)
            sys.exit(1)
    logging.basicConfig(level=log_level, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S", handlers=log_handlers)

    try:
        names, verified = run(args)
    except EnumError as exc:
        logging.error("%s: %s", exc.label, exc)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n[!] Interrupted by user")
        sys.exit(130)

    fmts = split_csv(args.output.lower())
    if fmts:
        stem = Path(args.log_file).stem if args.log_file else "logins_" + args.target.replace(":", "-").replace(",", "-").replace("\\", "_")
        if not verified:
            stem += "_unverified"
            logging.warning("Oracle check was skipped; exporting candidates as unverified.")
        for path in dump_outputs(build_frame(names, verified), stem, Path(args.outdir), fmts):
            logging.info("Results saved to '%s'.", path)

if __name__ == "__main__":
    main()
