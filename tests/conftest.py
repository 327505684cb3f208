"""Shared test fixtures for bpanalyzer."""

from __future__ import annotations

import pytest

from bpanalyzer.model.objects import (
    KPI,
    CalculatedColumn,
    CalculatedTable,
    CalculatedTableColumn,
    CalculationGroup,
    CalculationGroupTable,
    CalculationItem,
    Culture,
    DataColumn,
    Hierarchy,
    Level,
    Measure,
    Model,
    ModelRole,
    ModelRoleMember,
    NamedExpression,
    Partition,
    Perspective,
    ProviderDataSource,
    Relationship,
    StructuredDataSource,
    Table,
    TablePermission,
    Variation,
)


@pytest.fixture()
def sales_model() -> Model:
    """A small model with at least one object in every scope."""
    sales = Table(
        name="Sales",
        columns=[
            DataColumn(name="Amount", data_type="Double"),
            DataColumn(name="CustomerKey", data_type="Int64", is_hidden=True),
            DataColumn(
                name="OrderDate",
                data_type="DateTime",
                variations=[Variation(name="Variation", is_default=True)],
            ),
            CalculatedColumn(name="Margin", data_type="Decimal", expression="[Amount] * 0.2"),
        ],
        measures=[
            Measure(name="Total Sales", expression="SUM(Sales[Amount])", format_string="0.00"),
            Measure(
                name="Order Count",
                expression="COUNTROWS(Sales)",
                kpi=KPI(name="Order Count KPI", target_expression="100"),
            ),
            Measure(name="Avg Sale", expression="DIVIDE([Total Sales], [Order Count])"),
        ],
        hierarchies=[
            Hierarchy(
                name="Calendar",
                levels=[Level(name="Year", column="OrderDate", ordinal=0)],
            )
        ],
        partitions=[Partition(name="Sales-Part", query="SELECT * FROM sales", data_source="SQL")],
    )
    customer = Table(name="Customer", columns=[DataColumn(name="Key", data_type="Int64")])
    top = CalculatedTable(
        name="Top Customers",
        expression="TOPN(10, Customer)",
        columns=[CalculatedTableColumn(name="Key", source_column="Customer[Key]")],
    )
    time_intel = CalculationGroupTable(
        name="Time Intelligence",
        calculation_group=CalculationGroup(
            name="Time Intelligence",
            calculation_items=[CalculationItem(name="YTD", expression="TOTALYTD(...)")],
        ),
    )
    return Model(
        name="Sales Model",
        compatibility_level=1500,
        tables=[sales, customer, top, time_intel],
        relationships=[
            Relationship(
                name="",
                from_table="Sales", from_column="CustomerKey", to_table="Customer", to_column="Key"
            )
        ],
        perspectives=[Perspective(name="Finance")],
        cultures=[Culture(name="en-US")],
        roles=[
            ModelRole(
                name="Reader",
                members=[ModelRoleMember(name="alice", member_id="alice@example.com")],
                table_permissions=[TablePermission(name="Sales", filter_expression="TRUE()")],
            )
        ],
        data_sources=[
            ProviderDataSource(name="SQL", connection_string="Data Source=.", provider="SQLNCLI"),
            StructuredDataSource(name="Lake", protocol="adls"),
        ],
        expressions=[NamedExpression(name="ServerName", expression='"localhost"')],
    )
