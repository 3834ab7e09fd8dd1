from pathlib import Path
from typing import Optional
import json
import re


DEFAULTS = {
    "dataset_root": "dataset",
    "variants": ["ba2"],
    "min_date": "2019",
    "group_by": "country",
    "max_per_group": 500,
    "include_where": "country=Guinea",
    "seed": 10,
    "augur": "augur",
    "seqkit": "seqkit",
    "id_lister": "seqkit",
    "match": "substring",
    "id_column": "strain",
    "keep_going": False,
    "jobs": 1,
}
ID_LISTERS = "seqkit", "biopython"
MATCH_MODES = "substring", "exact"

# Dates augur accepts for --min-date: 2019, 2019-03, 2019-03-01 or 2019.25
DATE_PATTERN = re.compile(r"^\d{4}(-\d{2}(-\d{2})?|\.\d+)?$")


class SubsampleConfig:

    def __init__(self, **kwargs) -> None:
        """
        Settings for a subsampling run.

        Any setting that is not passed takes its value from DEFAULTS. Variants may be
        given as a list of names or as a single comma separated string.

        Raises:
            ValueError: If an unknown setting is passed.
        """
        if unknown := set(kwargs) - set(DEFAULTS):
            raise ValueError(f"unknown settings: {', '.join(sorted(unknown))}")

        for key, default in DEFAULTS.items():
            setattr(self, key, kwargs.get(key, default))

        if isinstance(self.variants, str):
            self.variants = [name.strip() for name in self.variants.split(",")]
        else:
            self.variants = list(self.variants)

    def __repr__(self):
        settings = ", ".join(f"{key}={value!r}" for key, value in self.as_dict().items())
        return f"SubsampleConfig({settings})"

    def __eq__(self, other):
        return isinstance(other, SubsampleConfig) and self.as_dict() == other.as_dict()

    def as_dict(self) -> dict:
        return {key: getattr(self, key) for key in DEFAULTS}

    @classmethod
    def from_json(cls, path: str | Path, **overrides) -> "SubsampleConfig":
        """
        Load settings from a JSON file.

        Args:
            path: JSON file containing an object whose keys are setting names.
            **overrides: Settings that take precedence over the file. Overrides that are
                None are ignored.

        Returns:
            A SubsampleConfig. It is not validated.
        """
        with open(path) as fobj:
            settings = json.load(fobj)

        if not isinstance(settings, dict):
            raise ValueError(f"{path} must contain a JSON object")

        settings.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**settings)

    @property
    def include_column(self) -> Optional[str]:
        """
        The metadata column the include-where clause refers to, e.g. 'country' for
        'country=Guinea' or 'country!=Guinea'.
        """
        if "=" not in self.include_where:
            return None
        return self.include_where.split("=", 1)[0].rstrip("!").strip() or None

    def validate(self) -> "SubsampleConfig":
        """
        Check the settings before any variant is processed.

        Returns:
            The config itself, so calls can be chained.

        Raises:
            ValueError: Describing every invalid setting.
        """
        problems = []

        if not self.variants:
            problems.append("at least one variant is required")
        for name in self.variants:
            if not name or "/" in name or name in {".", ".."}:
                problems.append(f"invalid variant name: {name!r}")
        if len(set(self.variants)) != len(self.variants):
            problems.append(f"variants listed more than once: {self.variants}")

        if not DATE_PATTERN.match(str(self.min_date)):
            problems.append(f"invalid min date: {self.min_date!r}")

        for key in "max_per_group", "jobs":
            value = getattr(self, key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                problems.append(f"{key} must be a positive integer, not {value!r}")

        if not isinstance(self.seed, int) or isinstance(self.seed, bool) or self.seed < 0:
            problems.append(f"seed must be a non-negative integer, not {self.seed!r}")

        for key in "group_by", "include_where", "id_column", "augur", "seqkit":
            if not str(getattr(self, key)).strip():
                problems.append(f"{key} must not be empty")

        if self.id_lister not in ID_LISTERS:
            problems.append(f"id_lister must be one of {ID_LISTERS}, not {self.id_lister!r}")
        if self.match not in MATCH_MODES:
            problems.append(f"match must be one of {MATCH_MODES}, not {self.match!r}")

        if problems:
            raise ValueError("; ".join(problems))

        return self
