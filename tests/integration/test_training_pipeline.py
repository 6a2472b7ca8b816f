"""
Integration tests for the formula -> design -> network -> evaluation pipeline.

These tests run the full pipeline against a scripted engine so that every
orchestration path can be checked without training a real network.
"""

import json

import pytest
import numpy as np
import pandas as pd

import formulanet as fn
from formulanet.config import OptimizerName
from formulanet.core.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    ExpressionEvaluationError,
    FormulaParseError,
    LayerSpecError,
    UnseenLevelWarning,
)
from formulanet.formulas import OutcomeMode
from formulanet.models.layers import Activation
from formulanet.optimization import HyperParameters, TrainingOrchestrator, engine_stage


pytestmark = pytest.mark.integration

CUT_FORMULA = "cut(y, c(-1,0,1,10)) ~ x1 + x2"


class TestFitFormula:
    """End-to-end fitting with a scripted engine."""

    def test_cut_scenario(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, Nepochs=3, seed=0)

        assert artifact.design_width == 4
        assert artifact.design_schema.column_names == ["x1", "x2_a", "x2_b", "x2_c"]
        assert artifact.encoding.mode == OutcomeMode.MULTICLASS
        assert artifact.output_units == 3
        assert [l.units for l in artifact.architecture.layers] == [256, 128, 3]
        assert artifact.architecture.output_activation == Activation.SOFTMAX
        assert fake_engine.calls == ["build", "fit", "predict"]

    def test_history_and_partition(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, Nepochs=3, seed=0)

        assert artifact.epochs_run == 3
        assert artifact.history["loss"] == pytest.approx([1.0, 0.5, 1.0 / 3.0])
        assert "val_loss" in artifact.history
        assert artifact.n_records == 100
        assert artifact.n_train == 80
        assert len(artifact.validation_rows) == 20
        assert np.all(np.diff(artifact.validation_rows) > 0)
        assert fake_engine.fit_args["X"].shape == (80, 4)
        assert fake_engine.fit_args["y"].shape == (80, 3)
        assert fake_engine.fit_args["X_val"].shape == (20, 4)

    def test_evaluation_uses_validation_rows(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, Nepochs=1, seed=0)

        report = artifact.evaluation
        assert report.n_observations == 20
        # constant outputs always pick the first level; seven validation rows are in it
        assert report.accuracy == pytest.approx(7 / 20)
        assert report.confusion.sum() == 20
        assert set(artifact.validation_predictions()) == {"(-1.0, 0.0]"}

    def test_same_seed_same_split(self, scenario_frame, engine_factory):
        first = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=engine_factory(), Nepochs=1, seed=5)
        second = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=engine_factory(), Nepochs=1, seed=5)

        np.testing.assert_array_equal(first.validation_rows, second.validation_rows)

    def test_rows_without_outcome_are_excluded(self, scenario_frame, fake_engine):
        frame = scenario_frame.copy()
        frame.loc[[0, 10, 20, 30, 40], "y"] = np.nan

        artifact = fn.fit_formula(CUT_FORMULA, frame, engine=fake_engine, Nepochs=1, seed=0)

        assert artifact.metadata["excluded_rows"] == 5
        assert artifact.n_train + len(artifact.validation_rows) == 95
        assert not set(artifact.validation_rows) & {0, 10, 20, 30, 40}
        # the design matrix still covers every record
        assert artifact.n_records == 100

    def test_too_few_usable_outcomes(self, fake_engine):
        # two declared buckets, only one record inside them
        frame = pd.DataFrame({"y": [0.5, 50.0, 60.0, 70.0], "x": [1.0, 2.0, 3.0, 4.0]})

        with pytest.raises(ExpressionEvaluationError, match="usable outcome"):
            fn.fit_formula("cut(y, c(0, 1, 2)) ~ x", frame, engine=fake_engine, Nepochs=1)

    def test_binary_outcome(self, binary_frame, fake_engine):
        artifact = fn.fit_formula("label ~ x1 + x2 + group", binary_frame, engine=fake_engine,
                                  Nepochs=2, seed=0)

        assert artifact.encoding.mode == OutcomeMode.BINARY
        assert artifact.output_units == 1
        assert artifact.architecture.output_activation == Activation.SIGMOID
        assert artifact.design_schema.column_names == ["x1", "x2", "group_g1", "group_g2"]
        assert fake_engine.fit_args["y"].shape[1] == 1

    def test_continuous_outcome(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula("y ~ x1 + x2", scenario_frame, engine=fake_engine, Nepochs=2, seed=0)

        assert artifact.encoding.mode == OutcomeMode.CONTINUOUS
        assert artifact.architecture.output_activation == Activation.LINEAR
        assert artifact.evaluation.accuracy is None
        assert artifact.evaluation.rmse > 0
        assert len(artifact.validation_rows) == 20

    def test_tweet_features(self, tweets_frame, fake_engine):
        artifact = fn.fit_formula(
            "cut(retweet_count, c(-1, 2, 4, 100)) ~ followers + source + n(hashtags) "
            "+ contains(text, 'http') + hour(created_at)",
            tweets_frame,
            engine=fake_engine,
            Nepochs=1,
            seed=0,
        )

        assert artifact.design_schema.column_names == [
            "followers",
            "source_TweetDeck",
            "source_Twitter_Web_App",
            "source_Twitter_for_iPhone",
            "n_hashtags",
            "contains_text_http",
            "hour_created_at",
        ]
        assert artifact.output_units == 3

    def test_custom_helper(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(
            "cut(y, c(-1,0,1,10)) ~ double(x1) + x2",
            scenario_frame,
            engine=fake_engine,
            functions={"double": lambda x: x * 2},
            Nepochs=1,
        )
        train_rows = np.setdiff1d(np.arange(100), artifact.validation_rows)
        np.testing.assert_allclose(
            fake_engine.fit_args["X"][:, 0], 2 * scenario_frame["x1"].to_numpy()[train_rows], rtol=1e-5
        )

    def test_artifact_serialises(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, Nepochs=2, seed=0)

        info = json.loads(json.dumps(artifact.to_dict()))

        assert info["formula"]["outcome"] == "cut(y, c(-1,0,1,10))"
        assert info["architecture"]["layers"][-1]["units"] == 3
        assert info["hyperparameters"]["epochs"] == 2
        assert info["engine"] == "fake"


class TestLayerAndHyperparameterInputs:
    """Layer specifications and hyperparameters supplied by the caller."""

    def test_layer_mapping(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(
            CUT_FORMULA,
            scenario_frame,
            layers={"units": [16, "auto"], "activation": ["relu", "softmax"], "dropout": [0.1, None]},
            engine=fake_engine,
            Nepochs=1,
        )
        assert [l.units for l in artifact.architecture.layers] == [16, 3]

    def test_layer_spec_object(self, scenario_frame, fake_engine):
        spec = fn.LayerSpec.from_arrays([8, 8, "auto"], ["tanh", "tanh", "linear"])
        artifact = fn.fit_formula("y ~ x1", scenario_frame, layers=spec, engine=fake_engine, Nepochs=1)

        assert [l.units for l in artifact.architecture.layers] == [8, 8, 1]

    @pytest.mark.parametrize("final_units", [32, 3])
    def test_fixed_final_layer_fails_before_training(self, scenario_frame, fake_engine, final_units):
        with pytest.raises(LayerSpecError):
            fn.fit_formula(
                CUT_FORMULA,
                scenario_frame,
                layers={"units": [64, final_units], "activation": ["relu", "softmax"]},
                engine=fake_engine,
            )
        assert fake_engine.calls == []

    def test_invalid_layers_fail_before_design_matrix(self, scenario_frame, fake_engine, monkeypatch):
        built = []
        original_fit = fn.DesignMatrixBuilder.fit

        def recording_fit(self, evaluated):
            built.append("fit")
            return original_fit(self, evaluated)

        monkeypatch.setattr(fn.DesignMatrixBuilder, "fit", recording_fit)

        with pytest.raises(LayerSpecError):
            fn.fit_formula(
                CUT_FORMULA,
                scenario_frame,
                layers={"units": [64, 32], "activation": ["relu", "softmax"]},
                engine=fake_engine,
            )
        assert built == []

    def test_invalid_layers_reported_on_constant_predictors(self, fake_engine):
        frame = pd.DataFrame({"y": [0.5, -0.5, 3.0, 5.0], "x1": [1.0] * 4, "x2": ["a"] * 4})

        with pytest.raises(LayerSpecError):
            fn.fit_formula(
                CUT_FORMULA,
                frame,
                layers={"units": [64, 32], "activation": ["relu", "softmax"]},
                engine=fake_engine,
            )

    @pytest.mark.parametrize("layers", [
        {"units": [8, "auto"]},
        {"units": [8, "auto"], "activation": ["relu", "softmax"], "width": 3},
        [8, "auto"],
    ])
    def test_malformed_layer_argument(self, scenario_frame, fake_engine, layers):
        with pytest.raises(ConfigurationError):
            fn.fit_formula(CUT_FORMULA, scenario_frame, layers=layers, engine=fake_engine)

    def test_loss_override_checked_against_outcome(self, scenario_frame, fake_engine):
        with pytest.raises(LayerSpecError):
            fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, loss="binary_crossentropy")

    def test_hyperparameter_mapping_and_overrides(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(
            CUT_FORMULA,
            scenario_frame,
            hyperparameters={"Nepochs": 2, "batch_size": 8},
            engine=fake_engine,
            optimizer="sgd",
        )

        assert artifact.hyperparameters.epochs == 2
        assert artifact.hyperparameters.batch_size == 8
        assert artifact.hyperparameters.optimizer == OptimizerName.SGD

    def test_hyperparameter_object_with_nepochs_override(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(
            CUT_FORMULA,
            scenario_frame,
            hyperparameters=HyperParameters(epochs=5, validation_split=0.3),
            engine=fake_engine,
            Nepochs=2,
        )

        assert artifact.epochs_run == 2
        assert artifact.hyperparameters.validation_split == 0.3

    def test_configured_defaults(self, scenario_frame, fake_engine):
        fn.configure(**{"training.epochs": 4})
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine)

        assert artifact.epochs_run == 4

    def test_invalid_hyperparameter(self, scenario_frame, fake_engine):
        with pytest.raises(ConfigurationError):
            fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, batch_size=0)
        assert fake_engine.calls == []

    def test_parse_error_before_any_work(self, scenario_frame, fake_engine):
        with pytest.raises(FormulaParseError):
            fn.fit_formula("y ~ ", scenario_frame, engine=fake_engine)
        assert fake_engine.calls == []


class TestEngineFailures:
    """Engine exceptions propagate unchanged and tagged with their stage."""

    @pytest.mark.parametrize("stage", ["build", "fit", "predict"])
    def test_engine_error_is_tagged(self, scenario_frame, engine_factory, stage):
        error = RuntimeError(f"{stage} exploded")
        engine = engine_factory(fail_on=stage, error=error)

        with pytest.raises(RuntimeError) as exc_info:
            fn.fit_formula(CUT_FORMULA, scenario_frame, engine=engine, Nepochs=1)

        assert exc_info.value is error
        assert exc_info.value.formulanet_stage == "training"

    def test_existing_tag_is_kept(self):
        error = ValueError("nested")
        error.formulanet_stage = "inner"

        with pytest.raises(ValueError):
            with engine_stage():
                raise error

        assert error.formulanet_stage == "inner"


class TestExternalModels:
    """Caller-supplied models bypass the layer specification."""

    def test_matching_model_is_trained(self, scenario_frame, fake_engine, model_factory):
        model = model_factory(input_width=4, output_units=3)

        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, model=model, engine=fake_engine, Nepochs=2)

        assert artifact.architecture is None
        assert artifact.model is model
        assert model.fitted
        assert fake_engine.calls == ["fit", "predict"]
        assert artifact.evaluation.n_observations == 20

    def test_width_mismatch_fails_before_fit(self, scenario_frame, fake_engine, model_factory):
        model = model_factory(input_width=3, output_units=3)

        with pytest.raises(DimensionMismatchError) as exc_info:
            fn.fit_formula(CUT_FORMULA, scenario_frame, model=model, engine=fake_engine)

        assert "fit" not in fake_engine.calls
        assert exc_info.value.context["expected_width"] == 3
        assert exc_info.value.context["actual_width"] == 4

    def test_output_mismatch(self, scenario_frame, fake_engine, model_factory):
        with pytest.raises(DimensionMismatchError, match="outputs"):
            fn.fit_formula(CUT_FORMULA, scenario_frame, model=model_factory(4, 1), engine=fake_engine)
        assert fake_engine.calls == []

    def test_model_without_declared_width(self, scenario_frame, fake_engine):
        with pytest.raises(DimensionMismatchError, match="cannot determine"):
            fn.fit_formula(CUT_FORMULA, scenario_frame, model=object(), engine=fake_engine)

    def test_input_shape_is_understood(self, scenario_frame, fake_engine):
        class ShapedModel:
            input_shape = (None, 4)
            output_units = 3

        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, model=ShapedModel(), engine=fake_engine,
                                  Nepochs=1)
        assert artifact.design_width == 4

    def test_orchestrator_rejects_mismatched_architecture(self, scenario_frame, fake_engine):
        compiler = fn.FormulaCompiler()
        evaluated = compiler.compile(CUT_FORMULA, scenario_frame)
        design = fn.DesignMatrixBuilder().fit(evaluated)
        encoding = fn.OutcomeEncoder().fit(evaluated.outcome)
        architecture = fn.LayerSpecCompiler().compile(None, 7, encoding)

        with pytest.raises(DimensionMismatchError):
            TrainingOrchestrator(fake_engine).train(
                design, encoding.encode(evaluated.outcome), encoding, architecture, HyperParameters()
            )
        assert fake_engine.calls == []


class TestPredict:
    """Scoring new records with a fitted artifact."""

    def test_multiclass_probabilities(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, Nepochs=1)
        new = pd.DataFrame({"x1": [0.1, -0.3], "x2": ["a", "c"]})

        result = fn.predict(artifact, new)

        assert list(result.columns) == [
            "prediction",
            "probability_(-1.0, 0.0]",
            "probability_(0.0, 1.0]",
            "probability_(1.0, 10.0]",
        ]
        assert result["prediction"].tolist() == ["(-1.0, 0.0]", "(-1.0, 0.0]"]

    def test_unseen_level_keeps_width(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, Nepochs=1)
        new = pd.DataFrame({"x1": [0.1], "x2": ["d"]})

        with pytest.warns(UnseenLevelWarning):
            result = fn.predict(artifact, new)

        assert len(result) == 1

    def test_binary_probabilities(self, binary_frame, fake_engine):
        artifact = fn.fit_formula("label ~ x1 + x2", binary_frame, engine=fake_engine, Nepochs=1)

        result = fn.predict(artifact, binary_frame.drop(columns="label").head(3))

        assert result["prediction"].tolist() == ["1", "1", "1"]
        assert result["probability_0"].tolist() == pytest.approx([0.25] * 3)
        assert result["probability_1"].tolist() == pytest.approx([0.75] * 3)

    def test_continuous_predictions(self, scenario_frame, engine_factory):
        engine = engine_factory(output_value=2.5)
        artifact = fn.fit_formula("y ~ x1 + x2", scenario_frame, engine=engine, Nepochs=1)

        result = fn.predict(artifact, scenario_frame.head(4))

        assert list(result.columns) == ["prediction"]
        assert result["prediction"].tolist() == pytest.approx([2.5] * 4)

    def test_custom_helper_is_kept(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(
            "cut(y, c(-1,0,1,10)) ~ double(x1)", scenario_frame, engine=fake_engine,
            functions={"double": lambda x: x * 2}, Nepochs=1,
        )
        assert len(fn.predict(artifact, scenario_frame[["x1"]].head(2))) == 2


class TestExport:
    """Summary tables of fitted artifacts."""

    def setup_method(self):
        self.exporter = fn.ArtifactExporter(decimal_precision=4)

    def test_export_summary(self, scenario_frame, engine_factory, tmp_path):
        artifacts = [
            fn.fit_formula(CUT_FORMULA, scenario_frame, engine=engine_factory(), Nepochs=2, seed=0),
            fn.fit_formula("cut(y, c(-1,0,1,10)) ~ x1", scenario_frame, engine=engine_factory(),
                           Nepochs=3, seed=0),
        ]

        path = fn.export_summary(artifacts, tmp_path / "out" / "summary.csv", include_history=True)

        summary = pd.read_csv(path)
        assert summary["model_id"].tolist() == [1, 2]
        assert summary["formula"].tolist() == [CUT_FORMULA, "cut(y, c(-1,0,1,10)) ~ x1"]
        assert {"accuracy", "final_loss", "design_width", "epochs"} <= set(summary.columns)

        history = pd.read_csv(tmp_path / "out" / "summary_history.csv")
        assert len(history) == 5
        assert history.groupby("model_id")["epoch"].max().tolist() == [2, 3]

    def test_timestamped_path(self, scenario_frame, fake_engine, tmp_path):
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, Nepochs=1)

        path = fn.export_summary(artifact, tmp_path / "summary.csv", timestamp=True)

        assert path.exists()
        assert path.name.startswith("summary_")
        assert path.suffix == ".csv"

    def test_compare_ranks_continuous_by_rmse(self, scenario_frame, engine_factory):
        good = fn.fit_formula("y ~ x1", scenario_frame, engine=engine_factory(output_value=1.5),
                              Nepochs=1, seed=0)
        bad = fn.fit_formula("y ~ x1", scenario_frame, engine=engine_factory(output_value=50.0),
                             Nepochs=1, seed=0)

        ranked = self.exporter.compare([bad, good])

        assert ranked["rank"].tolist() == [1, 2]
        assert ranked["model_id"].tolist() == [2, 1]

    def test_history_frame(self, scenario_frame, fake_engine):
        artifact = fn.fit_formula(CUT_FORMULA, scenario_frame, engine=fake_engine, Nepochs=3)

        frame = self.exporter.history_frame(artifact)

        assert frame["epoch"].tolist() == [1, 2, 3]
        assert frame["loss"].tolist() == pytest.approx([1.0, 0.5, 0.3333])
