"""
Pipeline automation for the RPD meta-analyses.

Includes:
- Per-category analysis workflows
- Automated report generation
"""

from .workflow import (
    CategoryWorkflow,
    WorkflowResult,
    run_all,
    STAGES
)

from .reporting import (
    ReportConfig,
    generate_report,
    table_to_html,
    statistics_table,
    export_tables
)

__all__ = [
    # workflow
    'CategoryWorkflow',
    'WorkflowResult',
    'run_all',
    'STAGES',
    # reporting
    'ReportConfig',
    'generate_report',
    'table_to_html',
    'statistics_table',
    'export_tables'
]
