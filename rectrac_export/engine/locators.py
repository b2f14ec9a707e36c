import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_LOCATORS_PATH = Path(__file__).resolve().parent.parent / "workflows" / "rectrac_locators.yaml"

DESCRIPTOR_ATTRIBUTES = ("class", "id", "aria-label", "title", "name", "value")


@dataclass(frozen=True)
class Candidate:
    """One named heuristic for finding a control.

    Exactly one of ``css``, ``role`` or ``text`` selects the elements.
    ``exclude`` patterns reject an element whose descriptor (class, id,
    aria-label, title, name, value and text) matches; ``require`` patterns
    must all match it.
    """

    label: str
    css: str | None = None
    role: str | None = None
    name: str | None = None
    text: str | None = None
    nth: int | None = None
    exclude: tuple[str, ...] = ()
    require: tuple[str, ...] = ()

    def __post_init__(self):
        kinds = [k for k in (self.css, self.role, self.text) if k]
        if len(kinds) != 1:
            raise ValueError(f"Candidate '{self.label}' must declare exactly one of css, role or text")

    @property
    def kind(self) -> str:
        if self.css:
            return "css"
        if self.role:
            return "role"
        return "text"

    def locate(self, root: Any):
        """Build the locator for this candidate inside ``root`` (a page, frame or locator)."""
        if self.css:
            return root.locator(self.css)
        if self.role:
            if self.name:
                return root.get_by_role(self.role, name=re.compile(self.name, re.IGNORECASE))
            return root.get_by_role(self.role)
        return root.get_by_text(re.compile(self.text, re.IGNORECASE))

    def rejects(self, descriptor: str) -> bool:
        if any(re.search(p, descriptor, re.IGNORECASE) for p in self.exclude):
            return True
        return not all(re.search(p, descriptor, re.IGNORECASE) for p in self.require)

    @property
    def filtered(self) -> bool:
        return bool(self.exclude or self.require)

    def with_exclusions(self, patterns: tuple[str, ...]) -> "Candidate":
        if not patterns:
            return self
        merged = self.exclude + tuple(p for p in patterns if p not in self.exclude)
        return Candidate(
            label=self.label, css=self.css, role=self.role, name=self.name,
            text=self.text, nth=self.nth, exclude=merged, require=self.require,
        )


@dataclass(frozen=True)
class Target:
    """A semantic control and its candidates, most specific first."""

    name: str
    candidates: tuple[Candidate, ...]
    description: str = ""

    @property
    def labels(self) -> list[str]:
        return [c.label for c in self.candidates]

    def __iter__(self):
        return iter(self.candidates)

    def __len__(self):
        return len(self.candidates)


@dataclass
class Locators:
    targets: dict[str, Target] = field(default_factory=dict)

    def __getitem__(self, name: str) -> Target:
        try:
            return self.targets[name]
        except KeyError:
            raise KeyError(f"No locator target named '{name}'") from None

    def __contains__(self, name: str) -> bool:
        return name in self.targets

    def names(self) -> list[str]:
        return list(self.targets)


def _as_tuple(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _build_candidate(raw: dict, shared_exclude: tuple[str, ...]) -> Candidate:
    candidate = Candidate(
        label=raw["label"],
        css=raw.get("css"),
        role=raw.get("role"),
        name=raw.get("name"),
        text=raw.get("text"),
        nth=raw.get("nth"),
        exclude=_as_tuple(raw.get("exclude")),
        require=_as_tuple(raw.get("require")),
    )
    return candidate.with_exclusions(shared_exclude)


def parse_locators(data: dict) -> Locators:
    targets = {}
    for name, entry in (data.get("targets") or {}).items():
        shared_exclude = _as_tuple(entry.get("exclude"))
        candidates = tuple(_build_candidate(c, shared_exclude) for c in entry.get("candidates", []))
        if not candidates:
            raise ValueError(f"Locator target '{name}' declares no candidates")
        targets[name] = Target(name=name, candidates=candidates, description=entry.get("description", ""))
    return Locators(targets=targets)


def load_locators(path: Path | None = None) -> Locators:
    path = Path(path) if path else DEFAULT_LOCATORS_PATH
    with open(path) as f:
        return parse_locators(yaml.safe_load(f) or {})
