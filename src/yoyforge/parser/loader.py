"""YAML loader and metric catalog for yoyforge.

the catalog is the closed set of things a request may reference: base metrics
(table/field/aggregation/alias), derived metric formulas, allowed group-by
dimensions and table-level filter exclusions. yaml because the metric list
changes all the time and a config file beats a code deploy.

example file:

    primary_table: transactions
    date_field: date

    metrics:
      - table: transactions
        field: sales_price
        aggregation: sum
        alias: sales

    derived_metrics:
      - name: gross_margin_pct
        dependencies: [gross_margin, sales]
        formula: "CASE WHEN {sales} != 0 THEN ({gross_margin} / {sales}) * 100 ELSE 0 END"

    dimensions:
      - id: seller_id
        name: seller_name
      - id: month
"""

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

from yoyforge.compiler.conditions import DEFAULT_EXCLUSIONS
from yoyforge.compiler.derived import LAST_YEAR_SUFFIX, FormulaTemplate
from yoyforge.errors import InvalidFieldError
from yoyforge.models.dimension import Dimension, DimensionFieldPair, FilterExclusion
from yoyforge.models.metric import DerivedMetric, MetricRequest, is_identifier

logger = logging.getLogger(__name__)

DEFAULT_PRIMARY_TABLE = "transactions"
DEFAULT_DATE_FIELD = "date"


class MetricCatalog:
    """Registry of metrics, derived metrics and dimensions.

    loads yaml files, validates cross references, and provides lookups.
    """

    def __init__(self) -> None:
        self.metrics: dict[str, MetricRequest] = {}  # alias -> metric
        self.derived_metrics: dict[str, DerivedMetric] = {}  # name -> derived, config order
        self.dimensions: dict[str, Dimension] = {}  # id column -> dimension
        self._filter_exclusions: list[FilterExclusion] | None = None
        self._primary_table: str | None = None
        self._date_field: str | None = None

    @property
    def primary_table(self) -> str:
        return self._primary_table or DEFAULT_PRIMARY_TABLE

    @property
    def date_field(self) -> str:
        return self._date_field or DEFAULT_DATE_FIELD

    @property
    def filter_exclusions(self) -> tuple[FilterExclusion, ...]:
        """Configured exclusions, or the built-in budget/channel one when none are declared."""
        if self._filter_exclusions is None:
            return DEFAULT_EXCLUSIONS
        return tuple(self._filter_exclusions)

    def load_directory(self, path: Path) -> None:
        """Load every yaml file below path, then validate references."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Metrics directory not found: {path}")

        yaml_files = sorted(list(path.glob("**/*.yaml")) + list(path.glob("**/*.yml")))
        if not yaml_files:
            raise ValueError(f"No YAML files found in {path}")

        for yaml_file in yaml_files:
            self._load_file(yaml_file)

        self.validate()

    def load_yaml(self, text: str) -> None:
        """Load catalog definitions from a yaml string and validate."""
        self._load_data(yaml.safe_load(text), source="<string>")
        self.validate()

    def _load_file(self, path: Path) -> None:
        with open(path) as f:
            data = yaml.safe_load(f)
        self._load_data(data, source=str(path))

    def _load_data(self, data: dict[str, Any] | None, source: str) -> None:
        if data is None:
            return  # empty file
        if not isinstance(data, dict):
            raise ValueError(f"{source}: expected a mapping at the top level")

        self._primary_table = self._set_once("primary_table", self._primary_table, data, source)
        self._date_field = self._set_once("date_field", self._date_field, data, source)

        for metric_data in data.get("metrics") or []:
            metric = MetricRequest.model_validate(metric_data)
            if metric.alias in self.metrics:
                raise ValueError(f"Duplicate metric alias: {metric.alias}")
            self.metrics[metric.alias] = metric

        for derived_data in data.get("derived_metrics") or []:
            derived = DerivedMetric.model_validate(derived_data)
            if derived.name in self.derived_metrics:
                raise ValueError(f"Duplicate derived metric: {derived.name}")
            self.derived_metrics[derived.name] = derived

        for dimension_data in data.get("dimensions") or []:
            dimension = Dimension.model_validate(dimension_data)
            if dimension.id in self.dimensions:
                raise ValueError(f"Duplicate dimension: {dimension.id}")
            self.dimensions[dimension.id] = dimension

        if "filter_exclusions" in data:
            self._filter_exclusions = self._filter_exclusions or []
        for exclusion_data in data.get("filter_exclusions") or []:
            self._filter_exclusions.append(FilterExclusion.model_validate(exclusion_data))

        logger.debug("Loaded catalog definitions from %s", source)

    @staticmethod
    def _set_once(key: str, current: str | None, data: dict[str, Any], source: str) -> str | None:
        value = data.get(key)
        if value is None:
            return current
        if not isinstance(value, str) or not is_identifier(value):
            raise ValueError(f"{source}: invalid {key} {value!r}")
        if current is not None and current != value:
            raise ValueError(f"{source}: {key} already set to '{current}', got '{value}'")
        return value

    def validate(self) -> None:
        """Check derived metric references and formulas.

        a derived metric may only depend on base aliases, their _last_year
        variant, or other derived metrics. catching this at load time beats a
        metric silently never showing up.
        """
        known = set(self.metrics)
        known.update(f"{alias}{LAST_YEAR_SUFFIX}" for alias in self.metrics)
        known.update(self.derived_metrics)

        for name, derived in self.derived_metrics.items():
            if name in self.metrics:
                raise ValueError(f"Derived metric '{name}' clashes with a base metric alias")
            for dependency in derived.dependencies:
                if dependency not in known:
                    raise ValueError(
                        f"Derived metric '{name}' references unknown metric '{dependency}'"
                    )
            FormulaTemplate.parse(derived.formula, derived.dependencies)

    # --- lookups ---

    def get_metric(self, alias: str) -> MetricRequest:
        if alias not in self.metrics:
            raise InvalidFieldError(f"Unknown metric: {alias}", field=alias)
        return self.metrics[alias]

    def resolve_metrics(
        self, metrics: Iterable[MetricRequest | str] | None = None
    ) -> list[MetricRequest]:
        """Turn aliases into MetricRequests; None means every catalog metric."""
        if metrics is None:
            return list(self.metrics.values())
        return [m if isinstance(m, MetricRequest) else self.get_metric(m) for m in metrics]

    def dimension_pair(self, group_by: str) -> DimensionFieldPair:
        """Id/name columns for a group-by key.

        when the catalog declares dimensions they are an allow-list. a catalog
        without any dimensions accepts any identifier as a single-column one.
        """
        dimension = self.dimensions.get(group_by)
        if dimension is not None:
            return dimension.field_pair()
        if self.dimensions:
            raise InvalidFieldError(
                f"Invalid groupBy dimension: {group_by}. Must be one of: {', '.join(self.dimensions)}",
                field=group_by,
            )
        return DimensionFieldPair.single(group_by)

    def metric_aliases(self) -> list[str]:
        return list(self.metrics)

    def derived_metric_names(self) -> list[str]:
        return list(self.derived_metrics)
