#!/usr/bin/env python3
"""
Run full experiment demo: create -> start -> simulate -> results -> report.

Creates artifacts/experiments/<id>/results.json and exec_summary.html, and
logs raw events under data/experiments/<id>/events.csv.
"""

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))


def main():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    from src.abtesting.engine import ExperimentEngine
    from src.abtesting.event_store import CsvEventSink, get_event_summary
    from src.abtesting.report import render_exec_summary
    from src.abtesting.simulate_traffic import run_simulation

    data_dir = ROOT / "data" / "experiments"
    artifacts_dir = ROOT / "artifacts" / "experiments"
    engine = ExperimentEngine(event_sink=CsvEventSink(str(data_dir)))

    print("1. Creating experiment...")
    experiment = engine.create_experiment({
        "name": "Recap intro length",
        "template_type": "match_recap",
        "description": "Short vs long intro paragraph for generated match recaps",
        "variants": [{"name": "control", "weight": 50}, {"name": "short_intro", "weight": 50}],
        "primary_metric": "conversion_rate",
    })
    experiment_id = experiment.experiment_id
    engine.start_experiment(experiment_id)
    print(f"   {experiment_id} running")

    print("2. Simulating traffic...")
    summary = run_simulation(
        engine,
        experiment_id,
        n_subjects=4000,
        conversion_rates={"control": 0.10, "short_intro": 0.13},
        secondary_rates={"engagement": {"control": 0.40, "short_intro": 0.42}},
    )
    print(f"   Assigned: {summary['assigned']}, converted: {summary['converted']}")

    print("3. Computing results...")
    results = engine.get_experiment_results(experiment_id)
    rec = results.recommendations
    print(f"   Recommendation: {rec.action.value} ({rec.confidence.value}), winner={rec.winner}")

    print("4. Stopping experiment and generating executive summary...")
    _, final = engine.stop_experiment(experiment_id, reason="demo_complete")
    out_path = render_exec_summary(final, experiment_id, artifacts_dir=str(artifacts_dir))
    print(f"   Event log: {get_event_summary(experiment_id, base_dir=str(data_dir))}")

    print(f"\n[OK] Demo complete. Artifacts in {out_path.parent}:")
    for f in sorted(out_path.parent.iterdir()):
        print(f"   - {f.name}")


if __name__ == "__main__":
    main()
