"""Broker subject matching.

Subjects are dot-separated tokens.  In a subscription pattern ``*`` matches
exactly one token and ``>`` (last token only) matches one or more trailing
tokens, e.g. ``marketplace.vendor.>`` matches
``marketplace.vendor.onboarded``.
"""

from __future__ import annotations


def is_valid_pattern(pattern: str) -> bool:
    tokens = pattern.split(".")
    if any(not t for t in tokens):
        return False
    return all(t != ">" for t in tokens[:-1])


def subject_matches(pattern: str, subject: str) -> bool:
    """Return True if *subject* is delivered to a subscription on *pattern*."""
    p_tokens = pattern.split(".")
    s_tokens = subject.split(".")

    for i, p in enumerate(p_tokens):
        if p == ">":
            return len(s_tokens) > i
        if i >= len(s_tokens):
            return False
        if p != "*" and p != s_tokens[i]:
            return False
    return len(p_tokens) == len(s_tokens)
