"""Config-driven derived metrics.

a derived metric is a sql formula over other metrics, written with {name}
placeholders:

    CASE WHEN {budget} != 0 THEN ({sales} / {budget}) * 100 ELSE 0 END

placeholders are not substituted as text. the formula is parsed once with
sqlglot and the only column references allowed are its placeholders, so a
config typo (or something worse) can't smuggle a sub-query or a reference to
an arbitrary column into the generated sql. rendering swaps the placeholder
columns for CTE references on the parsed tree.
"""

import re
from collections.abc import Collection, Mapping, MutableSequence, Sequence

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from yoyforge.compiler.cte_builder import MetricsByTable, current_cte, previous_cte
from yoyforge.models.metric import DerivedMetric

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

# suffix callers use in formulas to reach the previous-year value of a base metric
LAST_YEAR_SUFFIX = "_last_year"


class FormulaTemplate:
    """A parsed formula whose only free names are its placeholders."""

    def __init__(self, formula: str, placeholders: frozenset[str], expression: exp.Expression) -> None:
        self.formula = formula
        self.placeholders = placeholders
        self.expression = expression

    @classmethod
    def parse(
        cls, formula: str, dependencies: Collection[str], dialect: str = "duckdb"
    ) -> "FormulaTemplate":
        """Validate and parse a formula.

        raises ValueError if a placeholder isn't a declared dependency, if the
        formula isn't a single scalar expression, or if it references any
        column that isn't a placeholder.
        """
        placeholders = frozenset(PLACEHOLDER_PATTERN.findall(formula))
        undeclared = placeholders - set(dependencies)
        if undeclared:
            raise ValueError(
                f"Formula placeholders {sorted(undeclared)} are not listed in dependencies"
            )

        text = PLACEHOLDER_PATTERN.sub(lambda m: m.group(1), formula)
        if "{" in text or "}" in text:
            raise ValueError(f"Malformed placeholder in formula: {formula!r}")

        try:
            statements = [s for s in sqlglot.parse(f"SELECT {text}", read=dialect) if s is not None]
        except SqlglotError as e:
            raise ValueError(f"Cannot parse formula {formula!r}: {e}") from e

        if len(statements) != 1 or not isinstance(statements[0], exp.Select):
            raise ValueError(f"Formula must be a single expression: {formula!r}")
        select = statements[0]
        if len(select.expressions) != 1 or any(
            select.args.get(key) for key in ("from", "where", "group", "having", "order", "limit")
        ):
            raise ValueError(f"Formula must be a single expression: {formula!r}")

        expression = select.expressions[0]
        if isinstance(expression, exp.Alias):
            raise ValueError(f"Formula must not alias itself: {formula!r}")
        if expression.find(exp.Select, exp.Subquery, exp.Table):
            raise ValueError(f"Formula must not contain sub-queries: {formula!r}")

        for column in expression.find_all(exp.Column):
            if column.table or column.name not in placeholders:
                raise ValueError(
                    f"Formula references {column.sql()!r} which is not a {{placeholder}}: {formula!r}"
                )

        return cls(formula, placeholders, expression)

    def substitute(self, references: Mapping[str, exp.Expression]) -> exp.Expression:
        """Return a new tree with each placeholder replaced by its reference."""

        def replace(node: exp.Expression) -> exp.Expression:
            if isinstance(node, exp.Column) and not node.table and node.name in references:
                return references[node.name].copy()
            return node

        return self.expression.copy().transform(replace)


def _zero_if_null(column: exp.Expression) -> exp.Expression:
    # grouped rows can miss a LEFT JOIN
    return exp.Coalesce(this=column, expressions=[exp.Literal.number(0)])


class DerivedMetricEngine:
    """Adds derived metrics to a select list.

    a derived metric only shows up when every dependency is available - that
    way the metric config can grow (or a request can ask for fewer base
    metrics) without anything erroring.
    """

    def __init__(self, derived_metrics: Sequence[DerivedMetric], dialect: str = "duckdb") -> None:
        self.derived_metrics = list(derived_metrics)
        self.dialect = dialect
        # parse upfront so a bad formula fails at startup, not on the first request
        self._templates = {
            metric.name: FormulaTemplate.parse(metric.formula, metric.dependencies, dialect)
            for metric in self.derived_metrics
        }

    def references(
        self, metrics_by_table: MetricsByTable, skipped_tables: Collection[str] = frozenset()
    ) -> dict[str, exp.Expression]:
        """Map every base alias (and alias_last_year) to the expression it resolves to.

        skipped tables aren't joined into the grouped query, their metrics are
        plain zeros.
        """
        refs: dict[str, exp.Expression] = {}
        for table, metrics in metrics_by_table.items():
            for metric in metrics:
                if table in skipped_tables:
                    refs[metric.alias] = exp.Literal.number(0)
                    refs[f"{metric.alias}{LAST_YEAR_SUFFIX}"] = exp.Literal.number(0)
                else:
                    refs[metric.alias] = _zero_if_null(exp.column(metric.alias, table=current_cte(table)))
                    refs[f"{metric.alias}{LAST_YEAR_SUFFIX}"] = _zero_if_null(
                        exp.column(f"{metric.alias}_ly", table=previous_cte(table))
                    )
        return refs

    def apply(
        self,
        select_list: MutableSequence[str],
        metrics_by_table: MetricsByTable,
        skipped_tables: Collection[str] = frozenset(),
    ) -> list[str]:
        """Append every computable derived metric to select_list.

        runs in passes so a derived metric can depend on another one; the
        dependency is inlined in parentheses. returns the names added, in the
        order they were added.
        """
        references = self.references(metrics_by_table, skipped_tables)
        added: list[str] = []

        progress = True
        while progress:
            progress = False
            for metric in self.derived_metrics:
                if metric.name in added:
                    continue
                if not all(dep in references for dep in metric.dependencies):
                    continue

                expression = self._templates[metric.name].substitute(references)
                select_list.append(f"{expression.sql(dialect=self.dialect)} AS {metric.name}")
                references[metric.name] = exp.Paren(this=expression)
                added.append(metric.name)
                progress = True

        return added
