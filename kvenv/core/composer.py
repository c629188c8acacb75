"""
Environment composition: base environment + secret fragment - mask.
"""

from __future__ import annotations

import os
from typing import Iterable, Mapping, Optional


def capture_environment(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """
    Point-in-time copy of the process environment (or of `environ`).
    Later changes to the source do not affect the returned snapshot.
    """
    source = os.environ if environ is None else environ
    return dict(source)


def compose(
    base: Mapping[str, str],
    fragment: Mapping[str, str],
    mask: Iterable[str] = (),
) -> dict[str, str]:
    """
    Layer `fragment` over `base`, then drop every masked key.

    Fragment keys overwrite base keys of the same name. Masking is applied
    last and unconditionally; masking an absent key is a no-op.
    """
    env = dict(base)
    env.update(fragment)
    for name in mask:
        env.pop(name, None)
    return env
