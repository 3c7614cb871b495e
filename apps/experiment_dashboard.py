"""
Experiment Dashboard - Template Experiment Studio.

Streamlit app with pages: Design, Run Demo, Results, Recommendation.
"""

import sys
from pathlib import Path

# Add project root
ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

import streamlit as st

st.set_page_config(page_title="Template Experiment Studio", page_icon="📊", layout="wide")

st.markdown("""
<style>
    .recommendation-implement { background: #d5f5e3; padding: 12px; border-radius: 6px; }
    .recommendation-stop { background: #fdebd0; padding: 12px; border-radius: 6px; }
    .recommendation-continue { background: #ebf5fb; padding: 12px; border-radius: 6px; }
</style>
""", unsafe_allow_html=True)


def get_engine():
    """One engine per browser session, logging events under data/experiments."""
    if "engine" not in st.session_state:
        from src.abtesting.engine import ExperimentEngine
        from src.abtesting.event_store import CsvEventSink
        st.session_state["engine"] = ExperimentEngine(
            event_sink=CsvEventSink(str(ROOT / "data" / "experiments"))
        )
    return st.session_state["engine"]


def get_experiment_ids():
    return [e.experiment_id for e in get_engine().list_experiments()]


def main():
    st.title("📊 Template Experiment Studio")
    st.caption("A/B testing for content-generation templates")

    tab1, tab2, tab3, tab4 = st.tabs(["Design", "Run Demo", "Results", "Recommendation"])

    with tab1:
        st.header("Experiment Design")
        name = st.text_input("Experiment name", value="Recap intro length")
        template_type = st.text_input("Template type", value="match_recap")
        weight_a = st.slider("Control weight (%)", 0, 100, 50, 5)
        primary_metric = st.selectbox("Primary metric", ["conversion_rate", "engagement_rate", "completion_rate"])
        min_n = st.number_input("Minimum sample size per variant", 10, 100000, 100, 10)

        if st.button("Create experiment"):
            from src.abtesting.exceptions import ExperimentError
            try:
                exp = get_engine().create_experiment({
                    "name": name,
                    "template_type": template_type,
                    "variants": [
                        {"name": "control", "weight": weight_a},
                        {"name": "treatment", "weight": 100 - weight_a},
                    ],
                    "primary_metric": primary_metric,
                    "minimum_sample_size": int(min_n),
                })
                st.success(f"Created draft experiment {exp.experiment_id}")
            except ExperimentError as e:
                st.error(str(e))

        st.subheader("Power / MDE Calculator")
        baseline = st.number_input("Baseline rate (e.g., conversion)", 0.01, 0.99, 0.10, 0.01)
        mde_rel = st.slider("Target MDE (relative)", 0.05, 0.5, 0.15, 0.05)
        from src.abtesting.stats import sample_size_proportion, mde_proportion
        n_needed = sample_size_proportion(baseline, mde_rel)
        st.info(f"Sample size needed per variant: **{n_needed:,}** (for 80% power, α=0.05)")
        mde_ach = mde_proportion(baseline, int(min_n))
        st.info(f"With {int(min_n):,}/variant, detectable MDE: **{mde_ach*100:.1f}%** relative")

    with tab2:
        st.header("Run Demo")
        exp_ids = get_experiment_ids()
        if not exp_ids:
            st.info("Create an experiment on the Design tab first.")
        else:
            demo_exp_id = st.selectbox("Experiment", exp_ids, key="demo_exp")
            n_subjects = st.number_input("Synthetic subjects", 100, 100000, 2000, 100)
            rate_control = st.slider("True conversion rate: control", 0.0, 0.5, 0.10, 0.01)
            rate_treatment = st.slider("True conversion rate: treatment", 0.0, 0.5, 0.13, 0.01)
            if st.button("Run Simulation"):
                from src.abtesting.exceptions import ExperimentError
                from src.abtesting.schema import ExperimentStatus
                from src.abtesting.simulate_traffic import run_simulation
                engine = get_engine()
                with st.spinner("Running..."):
                    try:
                        if engine.registry.get(demo_exp_id).status == ExperimentStatus.DRAFT:
                            engine.start_experiment(demo_exp_id)
                        res = run_simulation(
                            engine,
                            demo_exp_id,
                            int(n_subjects),
                            {"control": rate_control, "treatment": rate_treatment},
                        )
                        st.success(f"Done! Assigned: {res['assigned']}")
                        st.json(res)
                    except ExperimentError as e:
                        st.error(str(e))

    with tab3:
        st.header("Results")
        exp_ids = get_experiment_ids()
        sel_exp = st.selectbox("Select experiment", ["---"] + exp_ids, key="results_exp") if exp_ids else "---"

        if sel_exp and sel_exp != "---":
            from src.abtesting.analyze import results_frame
            from src.abtesting.metrics import metrics_frame
            results = get_engine().get_experiment_results(sel_exp)
            st.session_state["last_results"] = results
            overall = results.statistical_analysis.overall

            c1, c2, c3 = st.columns(3)
            c1.metric("Status", results.experiment.status.value)
            c2.metric("Total users", overall.total_users)
            c3.metric("SRM", "✓ Pass" if overall.srm_passed else "✗ Fail")

            st.subheader("Variants")
            st.dataframe(metrics_frame(results.metrics), use_container_width=True)
            st.subheader("Pairwise tests")
            st.dataframe(results_frame(results.statistical_analysis), use_container_width=True)

            if results.experiment.is_running and st.button("Stop experiment"):
                get_engine().stop_experiment(sel_exp)
                st.success("Experiment completed; results frozen.")
        else:
            st.info("Run a demo first to see results.")

    with tab4:
        st.header("Recommendation")
        results = st.session_state.get("last_results")
        if results is not None:
            rec = results.recommendations
            css = f"recommendation-{rec.action.value}"
            winner = f" Winner: {rec.winner}." if rec.winner else ""
            st.markdown(
                f'<div class="{css}"><b>{rec.action.value.upper()}</b> '
                f'({rec.confidence.value} confidence).{winner} {" ".join(rec.reasons)}</div>',
                unsafe_allow_html=True,
            )
            for step in rec.next_steps:
                st.write(f"- {step}")
            st.caption("Based on sample size, statistical significance, and SRM status.")
        else:
            st.info("Open an experiment on the Results tab to see the recommendation.")


if __name__ == "__main__":
    main()
