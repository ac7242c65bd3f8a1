"""SQLite persistence: single file, zero config.

Every operation opens its own connection; the database file (and its unique
constraints) is the only synchronization point between concurrent requests.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from sc.errors import PersistenceError
from sc.models import (
    Contract, ContractEvent, ContractStatus, ContractTemplate, Signature, SignerToken,
)

logger = logging.getLogger(__name__)

SCHEMA = """\
CREATE TABLE IF NOT EXISTS templates(
  id TEXT, version INTEGER, name TEXT, data TEXT,
  created TEXT DEFAULT(datetime('now','localtime')),
  PRIMARY KEY(id, version)
);
CREATE TABLE IF NOT EXISTS contracts(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  contract_number TEXT UNIQUE NOT NULL,
  title TEXT, contract_type TEXT,
  template_id TEXT, template_version INTEGER, deal_id INTEGER,
  client TEXT DEFAULT '{}', speaker TEXT DEFAULT '{}', event TEXT DEFAULT '{}',
  total_amount REAL,
  document_body TEXT DEFAULT '',
  field_values TEXT DEFAULT '{}',
  status TEXT DEFAULT 'draft',
  requires_admin_signature INTEGER DEFAULT 0,
  created_by TEXT DEFAULT '',
  created_at TEXT, sent_at TEXT, expires_at TEXT, viewed_at TEXT,
  executed_at TEXT, activated_at TEXT, completed_at TEXT, cancelled_at TEXT,
  updated_at TEXT
);
CREATE TABLE IF NOT EXISTS signer_tokens(
  token TEXT PRIMARY KEY,
  contract_id INTEGER NOT NULL,
  signer_type TEXT NOT NULL,
  used INTEGER DEFAULT 0,
  created_at TEXT, viewed_at TEXT,
  UNIQUE(contract_id, signer_type)
);
CREATE TABLE IF NOT EXISTS signatures(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  contract_id INTEGER NOT NULL,
  signer_type TEXT NOT NULL,
  signer_name TEXT, signer_email TEXT, signer_title TEXT DEFAULT '',
  image_data TEXT,
  ip_address TEXT DEFAULT '', user_agent TEXT DEFAULT '',
  signed_at TEXT,
  UNIQUE(contract_id, signer_type)
);
CREATE TABLE IF NOT EXISTS audit(
  id INTEGER PRIMARY KEY AUTOINCREMENT, contract_id INTEGER,
  action TEXT, detail TEXT,
  ts TEXT DEFAULT(datetime('now','localtime'))
);
CREATE INDEX IF NOT EXISTS idx_tokens_contract ON signer_tokens(contract_id);
CREATE INDEX IF NOT EXISTS idx_audit_contract ON audit(contract_id);
"""

_JSON_COLS = ("client", "speaker", "event", "field_values")
_STAMP_COLS = {
    "sent_at", "expires_at", "viewed_at", "executed_at",
    "activated_at", "completed_at", "cancelled_at",
}


class Database:
    """Handle on one SQLite database.

    ``":memory:"`` gives a private shared-cache database that lives as long as
    this object, so separate connections still see the same data.
    """

    def __init__(self, path: str | Path = ":memory:", timeout: float = 10.0):
        self.timeout = timeout
        self._keeper: sqlite3.Connection | None = None
        if str(path) == ":memory:":
            self.target = f"file:sc-{uuid.uuid4().hex}?mode=memory&cache=shared"
            self.uri = True
            self._keeper = self._open()
        else:
            p = Path(path).expanduser()
            p.parent.mkdir(parents=True, exist_ok=True)
            self.target = str(p)
            self.uri = False
        self.init_schema()

    def __repr__(self) -> str:
        return f"Database({self.target!r})"

    def _open(self) -> sqlite3.Connection:
        c = sqlite3.connect(self.target, uri=self.uri, timeout=self.timeout)
        c.row_factory = sqlite3.Row
        return c

    def init_schema(self) -> None:
        with self.connect() as c:
            c.executescript(SCHEMA)

    @contextmanager
    def connect(self):
        """Plain connection; commits on success."""
        try:
            c = self._open()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database: {e}") from e
        try:
            yield c
            c.commit()
        except sqlite3.Error as e:
            c.rollback()
            logger.error("Database error: %s", e)
            raise PersistenceError(str(e)) from e
        finally:
            c.close()

    @contextmanager
    def transaction(self):
        """Write transaction taken with BEGIN IMMEDIATE.

        The write lock is held from the first statement, so a check made
        inside the block still holds when the block commits.
        """
        try:
            c = self._open()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open database: {e}") from e
        c.isolation_level = None
        try:
            c.execute("BEGIN IMMEDIATE")
            yield c
            c.execute("COMMIT")
        except sqlite3.Error as e:
            if c.in_transaction:
                c.execute("ROLLBACK")
            logger.error("Database error: %s", e)
            raise PersistenceError(str(e)) from e
        except BaseException:
            if c.in_transaction:
                c.execute("ROLLBACK")
            raise
        finally:
            c.close()

    def close(self) -> None:
        if self._keeper is not None:
            self._keeper.close()
            self._keeper = None


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

def _contract(r: sqlite3.Row | None) -> Contract | None:
    if r is None:
        return None
    d = dict(r)
    for col in _JSON_COLS:
        d[col] = json.loads(d[col] or "{}")
    return Contract.model_validate(d)


def get_contract(c, contract_id: int) -> Contract | None:
    r = c.execute("SELECT * FROM contracts WHERE id=?", (contract_id,)).fetchone()
    return _contract(r)


def get_contract_by_number(c, number: str) -> Contract | None:
    r = c.execute("SELECT * FROM contracts WHERE contract_number=?", (number,)).fetchone()
    return _contract(r)


def list_contracts(c, status: ContractStatus | None = None) -> list[Contract]:
    if status is None:
        rows = c.execute("SELECT * FROM contracts ORDER BY id DESC").fetchall()
    else:
        rows = c.execute(
            "SELECT * FROM contracts WHERE status=? ORDER BY id DESC", (status.value,)
        ).fetchall()
    return [_contract(r) for r in rows]


def insert_contract(c, contract: Contract) -> Contract:
    d = contract.model_dump(mode="json", exclude={"id"})
    for col in _JSON_COLS:
        d[col] = json.dumps(d[col])
    d["requires_admin_signature"] = int(contract.requires_admin_signature)
    cols = ", ".join(d)
    marks = ", ".join("?" for _ in d)
    cur = c.execute(f"INSERT INTO contracts({cols}) VALUES({marks})", tuple(d.values()))
    return contract.model_copy(update={"id": cur.lastrowid})


def update_status(c, contract_id: int, status: ContractStatus, **stamps: datetime) -> None:
    """Set status plus any lifecycle timestamps (sent_at=..., executed_at=...)."""
    bad = set(stamps) - _STAMP_COLS
    if bad:
        raise ValueError(f"Unknown timestamp columns: {sorted(bad)}")
    sets = ["status=?", "updated_at=?"]
    params: list = [status.value, _ts(datetime.now())]
    for col, value in stamps.items():
        sets.append(f"{col}=?")
        params.append(_ts(value))
    params.append(contract_id)
    c.execute(f"UPDATE contracts SET {', '.join(sets)} WHERE id=?", params)


def mark_contract_viewed(c, contract_id: int, when: datetime) -> bool:
    """Stamp the first view of any signing link; True only the first time."""
    cur = c.execute(
        "UPDATE contracts SET viewed_at=? WHERE id=? AND viewed_at IS NULL",
        (_ts(when), contract_id),
    )
    return cur.rowcount == 1


# ---------------------------------------------------------------------------
# Signer tokens
# ---------------------------------------------------------------------------

def _token(r: sqlite3.Row | None) -> SignerToken | None:
    return SignerToken.model_validate(dict(r)) if r else None


def insert_tokens(c, tokens: list[SignerToken]) -> None:
    c.executemany(
        "INSERT INTO signer_tokens(token, contract_id, signer_type, used, created_at) "
        "VALUES(?,?,?,?,?)",
        [(t.token, t.contract_id, t.signer_type.value, int(t.used), _ts(t.created_at))
         for t in tokens],
    )


def get_token(c, token: str) -> SignerToken | None:
    r = c.execute("SELECT * FROM signer_tokens WHERE token=?", (token,)).fetchone()
    return _token(r)


def list_tokens(c, contract_id: int) -> list[SignerToken]:
    rows = c.execute(
        "SELECT * FROM signer_tokens WHERE contract_id=? ORDER BY rowid", (contract_id,)
    ).fetchall()
    return [_token(r) for r in rows]


def mark_token_viewed(c, token: str, when: datetime) -> bool:
    cur = c.execute(
        "UPDATE signer_tokens SET viewed_at=? WHERE token=? AND viewed_at IS NULL",
        (_ts(when), token),
    )
    return cur.rowcount == 1


def mark_token_used(c, token: str) -> None:
    c.execute("UPDATE signer_tokens SET used=1 WHERE token=?", (token,))


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------

def insert_signature(c, sig: Signature) -> Signature | None:
    """Insert unless the role already signed; None means someone got there first."""
    cur = c.execute(
        "INSERT INTO signatures(contract_id, signer_type, signer_name, signer_email, "
        "signer_title, image_data, ip_address, user_agent, signed_at) "
        "VALUES(?,?,?,?,?,?,?,?,?) "
        "ON CONFLICT(contract_id, signer_type) DO NOTHING",
        (sig.contract_id, sig.signer_type.value, sig.signer_name, sig.signer_email,
         sig.signer_title, sig.image_data, sig.ip_address, sig.user_agent,
         _ts(sig.signed_at)),
    )
    if cur.rowcount == 0:
        return None
    return sig.model_copy(update={"id": cur.lastrowid})


def list_signatures(c, contract_id: int) -> list[Signature]:
    rows = c.execute(
        "SELECT * FROM signatures WHERE contract_id=? ORDER BY id", (contract_id,)
    ).fetchall()
    return [Signature.model_validate(dict(r)) for r in rows]


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def get_template(c, template_id: str, version: int | None = None) -> ContractTemplate | None:
    if version is None:
        r = c.execute(
            "SELECT data FROM templates WHERE id=? ORDER BY version DESC LIMIT 1",
            (template_id,),
        ).fetchone()
    else:
        r = c.execute(
            "SELECT data FROM templates WHERE id=? AND version=?", (template_id, version)
        ).fetchone()
    return ContractTemplate.model_validate_json(r["data"]) if r else None


def list_templates(c) -> list[ContractTemplate]:
    """Latest version of every template."""
    rows = c.execute(
        "SELECT t.data FROM templates t "
        "JOIN (SELECT id, MAX(version) AS v FROM templates GROUP BY id) m "
        "ON t.id = m.id AND t.version = m.v ORDER BY t.id"
    ).fetchall()
    return [ContractTemplate.model_validate_json(r["data"]) for r in rows]


def template_in_use(c, template_id: str, version: int) -> bool:
    r = c.execute(
        "SELECT 1 FROM contracts WHERE template_id=? AND template_version=? LIMIT 1",
        (template_id, version),
    ).fetchone()
    return r is not None


def save_template(c, template: ContractTemplate) -> ContractTemplate:
    """Store a template; editing one that issued contracts reference adds a version."""
    current = get_template(c, template.id)
    if current is None:
        saved = template.model_copy(update={"version": max(template.version, 1)})
    elif template_in_use(c, current.id, current.version):
        saved = template.model_copy(update={"version": current.version + 1})
    else:
        saved = template.model_copy(update={"version": current.version})
    c.execute(
        "INSERT INTO templates(id, version, name, data) VALUES(?,?,?,?) "
        "ON CONFLICT(id, version) DO UPDATE SET name=excluded.name, data=excluded.data",
        (saved.id, saved.version, saved.name, saved.model_dump_json()),
    )
    return saved


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------

def log(c, contract_id: int | None, action: str, detail: str = ""):
    c.execute(
        "INSERT INTO audit(contract_id, action, detail, ts) VALUES(?,?,?,?)",
        (contract_id, action, detail, _ts(datetime.now())),
    )


def list_events(c, contract_id: int) -> list[ContractEvent]:
    rows = c.execute(
        "SELECT * FROM audit WHERE contract_id=? ORDER BY id", (contract_id,)
    ).fetchall()
    return [ContractEvent.model_validate(dict(r)) for r in rows]
