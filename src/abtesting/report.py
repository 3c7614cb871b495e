"""
Executive summary for experiment results.

Renders an HTML page (Jinja2) plus the raw results JSON into
artifacts/experiments/<experiment_id>/.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from jinja2 import Environment, select_autoescape

from .schema import ExperimentResults

logger = logging.getLogger(__name__)

DEFAULT_ARTIFACTS_DIR = "artifacts/experiments"

_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{{ experiment.name }} - experiment summary</title>
  <style>
    body { font-family: sans-serif; margin: 32px; color: #222; }
    table { border-collapse: collapse; margin: 12px 0; }
    th, td { border: 1px solid #ccc; padding: 6px 10px; text-align: right; }
    th:first-child, td:first-child { text-align: left; }
    .rec { padding: 12px; border-radius: 6px; }
    .rec-implement { background: #d5f5e3; }
    .rec-continue { background: #ebf5fb; }
    .rec-stop { background: #fdebd0; }
    .warn { color: #a04000; }
  </style>
</head>
<body>
  <h1>{{ experiment.name }}</h1>
  <p>
    {{ experiment.experiment_id }} &middot; template <b>{{ experiment.template_type }}</b>
    &middot; topic {{ experiment.topic }} &middot; status <b>{{ experiment.status }}</b>
  </p>
  {% if experiment.description %}<p>{{ experiment.description }}</p>{% endif %}

  <div class="rec rec-{{ rec.action }}">
    <h2>Recommendation: {{ rec.action | upper }} ({{ rec.confidence }} confidence)</h2>
    {% if rec.winner %}<p>Winner: <b>{{ rec.winner }}</b></p>{% endif %}
    <ul>{% for r in rec.reasons %}<li>{{ r }}</li>{% endfor %}</ul>
    {% if rec.next_steps %}
    <p>Next steps:</p>
    <ul>{% for s in rec.next_steps %}<li>{{ s }}</li>{% endfor %}</ul>
    {% endif %}
  </div>

  <h2>Variants ({{ metrics.primary_metric }})</h2>
  <table>
    <tr><th>Variant</th><th>Users</th><th>Conversions</th><th>Rate</th></tr>
    {% for name, v in metrics.variants.items() %}
    <tr>
      <td>{{ name }}</td><td>{{ v.total_users }}</td><td>{{ v.conversions }}</td>
      <td>{{ "%.2f" | format(v.conversion_rate * 100) }}%</td>
    </tr>
    {% endfor %}
  </table>

  <h2>Pairwise tests</h2>
  <table>
    <tr><th>Pair</th><th>Effect</th><th>p-value</th><th>95% CI</th><th>Significant</th></tr>
    {% for key, r in analysis.pairwise.items() %}
    <tr>
      <td>{{ key }}</td>
      <td>{{ "%+.4f" | format(r.effect) }}</td>
      <td>{% if r.p_value is not none %}{{ "%.4f" | format(r.p_value) }}{% else %}{{ r.reason }}{% endif %}</td>
      <td>{% if r.confidence_interval %}[{{ "%.4f" | format(r.confidence_interval[0]) }}, {{ "%.4f" | format(r.confidence_interval[1]) }}]{% else %}&mdash;{% endif %}</td>
      <td>{{ "yes" if r.significant else "no" }}</td>
    </tr>
    {% endfor %}
  </table>
  {% if not analysis.overall.srm_passed %}
  <p class="warn">Sample ratio mismatch detected (p = {{ "%.4g" | format(analysis.overall.srm_p_value) }}).</p>
  {% endif %}
  <p><small>Generated {{ generated_at }}</small></p>
</body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))


def render_html(results: Dict[str, Any]) -> str:
    """Render a results dict (ExperimentResults.to_dict()) to HTML."""
    template = _env.from_string(_TEMPLATE)
    return template.render(
        experiment=results["experiment"],
        metrics=results["metrics"],
        analysis=results["statistical_analysis"],
        rec=results["recommendations"],
        generated_at=results.get("generated_at", ""),
    )


def render_exec_summary(
    results: Union[ExperimentResults, Dict[str, Any]],
    experiment_id: str,
    artifacts_dir: str = DEFAULT_ARTIFACTS_DIR,
) -> Path:
    """
    Write exec_summary.html and results.json for an experiment.

    Returns:
        Path to the HTML summary
    """
    data = results.to_dict() if isinstance(results, ExperimentResults) else results
    out_dir = Path(artifacts_dir) / experiment_id
    out_dir.mkdir(parents=True, exist_ok=True)

    with open(out_dir / "results.json", "w") as f:
        json.dump(data, f, indent=2)

    out_path = out_dir / "exec_summary.html"
    out_path.write_text(render_html(data))
    logger.info(f"Executive summary written to {out_path}")
    return out_path
