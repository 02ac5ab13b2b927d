"""Grouping dimensions and table-level filter exclusions."""

from pydantic import BaseModel, ConfigDict, field_validator

from yoyforge.models.metric import is_identifier


class DimensionFieldPair(BaseModel):
    """Id and display-name columns of a grouping dimension.

    customer_id/customer_name style dimensions have two columns, things like
    month use one column for both. name_field defaults to id_field.
    """

    model_config = ConfigDict(frozen=True)

    id_field: str
    name_field: str

    @classmethod
    def single(cls, field: str) -> "DimensionFieldPair":
        return cls(id_field=field, name_field=field)

    @property
    def has_name_field(self) -> bool:
        return self.id_field != self.name_field


class Dimension(BaseModel):
    """Catalog entry for an allowed group-by key."""

    id: str
    name: str | None = None
    description: str | None = None

    @field_validator("id", "name")
    @classmethod
    def _check_identifier(cls, value: str | None) -> str | None:
        if value is not None and not is_identifier(value):
            raise ValueError(f"Invalid dimension column: {value!r}")
        return value

    def field_pair(self) -> DimensionFieldPair:
        return DimensionFieldPair(id_field=self.id, name_field=self.name or self.id)


class FilterExclusion(BaseModel):
    """Never apply filters on field to tables whose name ends with table_suffix.

    budget tables are loaded at a coarser grain and can carry a column with the
    same name but different meaning, so the filter has to be suppressed even
    though the column exists.
    """

    model_config = ConfigDict(frozen=True)

    field: str
    table_suffix: str

    def applies_to(self, field: str, table_name: str) -> bool:
        return field == self.field and table_name.endswith(self.table_suffix)
