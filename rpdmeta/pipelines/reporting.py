"""
Automated report generation for the RPD meta-analyses.

Creates HTML reports with figures, statistics tables, and
publication-ready outputs.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Any
from pathlib import Path
from datetime import datetime
import os

import pandas as pd
from jinja2 import Template


@dataclass
class ReportConfig:
    """Configuration for report generation."""
    title: str = 'Etiology of Rapidly Progressive Dementia: Meta-analysis Report'
    author: str = ''
    include_figures: bool = True
    include_tables: bool = True
    include_summaries: bool = True


def table_to_html(
    frame: pd.DataFrame,
    title: Optional[str] = None,
    digits: int = 4
) -> str:
    """
    Render a results table as an HTML fragment.

    Parameters
    ----------
    frame : pd.DataFrame
        Table to render
    title : str, optional
        Caption shown above the table
    digits : int
        Decimal places for float columns

    Returns
    -------
    str
        HTML ``<table>`` markup
    """
    html = frame.to_html(
        index=False,
        float_format=lambda v: f"{v:.{digits}f}",
        classes='results',
        border=0,
        na_rep='',
    )
    if title:
        html = f'<h3>{title}</h3>\n{html}'
    return html


def _row_values(value):
    if isinstance(value, dict):
        val = value.get('estimate', value.get('proportion', value.get('statistic', 'N/A')))
        lo, hi = value.get('ci_lower'), value.get('ci_upper')
        p = value.get('p_value', 'N/A')
        return val, lo, hi, p
    return value, None, None, None


def statistics_table(
    stats: Dict[str, Any],
    format: str = 'markdown'
) -> str:
    """
    Create formatted statistics table.

    Parameters
    ----------
    stats : Dict
        Statistics results, each a value or a dict with ``estimate``
        (or ``proportion``), ``ci_lower``, ``ci_upper`` and ``p_value``
    format : str
        'markdown', 'latex', or 'html'

    Returns
    -------
    str
        Formatted table
    """
    if format == 'markdown':
        lines = ['| Metric | Value | CI 95% | p-value |', '|--------|-------|--------|---------|']

        for name, value in stats.items():
            val, lo, hi, p = _row_values(value)
            ci = f"[{lo:.4f}, {hi:.4f}]" if lo is not None and hi is not None else 'N/A'
            if isinstance(p, float):
                p = f"{p:.4f}" + ('*' if p < 0.05 else '')
            elif p is None:
                p = 'N/A'
            if isinstance(val, float):
                val = f"{val:.4f}"
            lines.append(f"| {name} | {val} | {ci} | {p} |")

        return '\n'.join(lines)

    elif format == 'latex':
        lines = [
            r'\begin{table}[h]',
            r'\centering',
            r'\begin{tabular}{lccc}',
            r'\hline',
            r'Metric & Value & 95\% CI & p-value \\',
            r'\hline'
        ]

        for name, value in stats.items():
            val, lo, hi, p = _row_values(value)
            ci = f"[{lo:.3f}, {hi:.3f}]" if lo is not None and hi is not None else '--'
            if isinstance(p, float):
                if p < 0.001:
                    p = r'$<$.001***'
                elif p < 0.01:
                    p = f'{p:.3f}**'
                elif p < 0.05:
                    p = f'{p:.3f}*'
                else:
                    p = f'{p:.3f}'
            elif p is None or p == 'N/A':
                p = '--'
            if isinstance(val, float):
                val = f"{val:.3f}"

            name = str(name).replace('_', r'\_').replace('%', r'\%')
            lines.append(f'{name} & {val} & {ci} & {p} \\\\')

        lines.extend([
            r'\hline',
            r'\end{tabular}',
            r'\caption{Meta-analysis results}',
            r'\label{tab:meta}',
            r'\end{table}'
        ])

        return '\n'.join(lines)

    elif format == 'html':
        rows = []
        for name, value in stats.items():
            val, lo, hi, p = _row_values(value)
            rows.append({
                'Metric': name,
                'Value': val,
                'CI lower': lo,
                'CI upper': hi,
                'p-value': p if isinstance(p, float) else None,
            })
        return table_to_html(pd.DataFrame(rows))

    else:
        raise ValueError(f"Unknown format: {format}")


_TEMPLATE = '''<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{{ title }}</title>
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 1200px;
            margin: 0 auto;
            padding: 20px;
            background: #f5f5f5;
        }
        .header {
            background: #2c3e50;
            color: white;
            padding: 30px;
            margin: -20px -20px 30px -20px;
        }
        .header h1 { margin: 0; }
        .section {
            background: white;
            padding: 20px;
            margin-bottom: 20px;
            border-radius: 5px;
            box-shadow: 0 2px 5px rgba(0,0,0,0.1);
        }
        .section h2 {
            color: #2c3e50;
            border-bottom: 2px solid #3498db;
            padding-bottom: 10px;
        }
        table.results {
            width: 100%;
            border-collapse: collapse;
            margin: 15px 0;
            font-size: 13px;
        }
        table.results th, table.results td {
            padding: 6px 10px;
            text-align: left;
            border-bottom: 1px solid #ddd;
        }
        table.results th { background: #3498db; color: white; }
        pre {
            background: #ecf0f1;
            padding: 12px;
            border-radius: 5px;
            overflow-x: auto;
        }
        .stat-box {
            display: inline-block;
            background: #ecf0f1;
            padding: 15px 25px;
            margin: 5px;
            border-radius: 5px;
        }
        .stat-value {
            font-size: 24px;
            font-weight: bold;
            color: #2c3e50;
        }
        .stat-label {
            color: #7f8c8d;
            font-size: 12px;
        }
        .warning { color: #c0392b; }
        .figure {
            text-align: center;
            margin: 20px 0;
        }
        .figure img {
            max-width: 100%;
            border: 1px solid #ddd;
            border-radius: 5px;
        }
        .figure-caption {
            color: #666;
            font-style: italic;
            margin-top: 10px;
        }
        .footer {
            text-align: center;
            color: #7f8c8d;
            padding: 20px;
            font-size: 12px;
        }
    </style>
</head>
<body>
    <div class="header">
        <h1>{{ title }}</h1>
        {% if author %}<p>{{ author }}</p>{% endif %}
        <p>Generated: {{ date }}</p>
    </div>

    {% for section in sections %}
    <div class="section">
        <h2>{{ section.title }}</h2>
        {% if section.meta %}
            <div class="stat-box">
                <div class="stat-value">{{ section.meta.k }}</div>
                <div class="stat-label">Studies</div>
            </div>
            <div class="stat-box">
                <div class="stat-value">{{ "%.1f" | format(section.meta.random.proportion * 100) }}%</div>
                <div class="stat-label">Pooled proportion
                    [{{ "%.1f" | format(section.meta.random.ci_lower * 100) }};
                    {{ "%.1f" | format(section.meta.random.ci_upper * 100) }}]</div>
            </div>
            <div class="stat-box">
                <div class="stat-value">{{ "%.0f" | format(section.meta.i2) }}%</div>
                <div class="stat-label">I&sup2;</div>
            </div>
        {% endif %}
        {% for message in section.warnings %}
            <p class="warning">{{ message }}</p>
        {% endfor %}
        {% if section.stats %}{{ section.stats }}{% endif %}
        {% for name, text in section.summaries.items() %}
            <h3>{{ name }}</h3>
            <pre>{{ text }}</pre>
        {% endfor %}
        {% for html in section.tables %}{{ html }}{% endfor %}
        {% for name, path in section.figures.items() %}
            <div class="figure">
                <img src="{{ path }}" alt="{{ name }}">
                <div class="figure-caption">{{ name }}</div>
            </div>
        {% endfor %}
    </div>
    {% endfor %}

    <div class="footer">
        Generated by rpdmeta
    </div>
</body>
</html>'''


def generate_report(
    results: Dict[str, Dict[str, Any]],
    figures: Optional[Dict[str, Path]] = None,
    output_path: Path = None,
    config: Optional[ReportConfig] = None
) -> Path:
    """
    Generate HTML analysis report.

    Parameters
    ----------
    results : Dict
        One entry per section (usually per category), each a dict with
        optional keys ``title``, ``meta`` (MetaProportionResult.to_dict()),
        ``stats`` (for statistics_table), ``summaries`` (name -> text),
        ``tables`` (name -> DataFrame), ``figures`` (name -> path) and
        ``warnings`` (list of str)
    figures : Dict[str, Path], optional
        Additional figures shown in a final section
    output_path : Path
        Output file path
    config : ReportConfig, optional
        Report configuration

    Returns
    -------
    Path
        Path to generated report
    """
    if config is None:
        config = ReportConfig()

    if output_path is None:
        output_path = Path('rpd_meta_report.html')
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    def rel(path):
        return os.path.relpath(Path(path), output_path.parent)

    sections = []
    for key, entry in results.items():
        section = {
            'title': entry.get('title', key),
            'meta': entry.get('meta'),
            'warnings': entry.get('warnings', []),
            'stats': statistics_table(entry['stats'], format='html') if entry.get('stats') else None,
            'summaries': entry.get('summaries', {}) if config.include_summaries else {},
            'tables': [],
            'figures': {},
        }
        if config.include_tables:
            section['tables'] = [
                table_to_html(frame, title=name) for name, frame in entry.get('tables', {}).items()
            ]
        if config.include_figures:
            section['figures'] = {name: rel(p) for name, p in entry.get('figures', {}).items()}
        sections.append(section)

    if figures and config.include_figures:
        sections.append({
            'title': 'Figures',
            'meta': None,
            'warnings': [],
            'stats': None,
            'summaries': {},
            'tables': [],
            'figures': {name: rel(p) for name, p in figures.items()},
        })

    html = Template(_TEMPLATE).render(
        title=config.title,
        author=config.author,
        date=datetime.now().strftime('%Y-%m-%d %H:%M'),
        sections=sections
    )

    with open(output_path, 'w') as f:
        f.write(html)

    print(f"Report generated: {output_path}")
    return output_path


def export_tables(
    tables: Dict[str, pd.DataFrame],
    output_dir: Path
) -> Dict[str, Path]:
    """
    Write result tables as CSV files.

    Parameters
    ----------
    tables : Dict[str, pd.DataFrame]
        Tables keyed by file stem
    output_dir : Path
        Output directory

    Returns
    -------
    Dict[str, Path]
        Paths to exported files
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    exported = {}
    for name, frame in tables.items():
        path = output_dir / f'{name}.csv'
        frame.to_csv(path, index=False)
        exported[name] = path

    return exported
