from __future__ import annotations

import hashlib
import hmac
import secrets

from app.config import settings

API_TOKEN_PREFIX = "fb_"


def api_token_new() -> str:
  return API_TOKEN_PREFIX + secrets.token_urlsafe(32)


def api_token_hint(token: str) -> str:
  t = (token or "").strip()
  return t[-4:] if len(t) >= 4 else t


def api_token_hash(token: str) -> str:
  # Keyed hash so DB leaks don't allow offline token matching.
  key = (settings.app_secret or "").encode("utf-8")
  msg = (token or "").strip().encode("utf-8")
  return hmac.new(key, msg, hashlib.sha256).hexdigest()
