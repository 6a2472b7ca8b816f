"""
Integration tests for the JAX training engine.

Networks here are small and trained for a handful of epochs; the learnability
check uses a linearly separable outcome.
"""

import pytest
import numpy as np
import jax.numpy as jnp
import optax

import formulanet as fn
from formulanet.core.exceptions import ConfigurationError, DimensionMismatchError
from formulanet.formulas import OutcomeEncoding, OutcomeMode
from formulanet.models.layers import Loss
from formulanet.optimization import HyperParameters, JaxModel, JaxTrainingEngine, create_optimizer, loss_function
from formulanet.optimization.engine import metric_function


pytestmark = pytest.mark.integration

MULTICLASS = OutcomeEncoding(mode=OutcomeMode.MULTICLASS, levels=("a", "b", "c"))
SMALL_LAYERS = {"units": [16, "auto"], "activation": ["relu", "softmax"], "dropout": [0.1, None]}


def small_architecture(input_width=4, encoding=MULTICLASS, units=(16, "auto"), activation=("relu", "softmax")):
    spec = fn.LayerSpec.from_arrays(list(units), list(activation))
    return fn.LayerSpecCompiler().compile(spec, input_width, encoding)


class TestBuildAndPredict:
    """Model construction and forward passes."""

    def setup_method(self):
        self.engine = JaxTrainingEngine()

    def test_parameter_shapes(self):
        model = self.engine.build(small_architecture(), seed=0)

        assert isinstance(model, JaxModel)
        assert [w.shape for w, _ in model.params] == [(4, 16), (16, 3)]
        assert [b.shape for _, b in model.params] == [(16,), (3,)]
        assert model.n_parameters == model.architecture.n_parameters
        assert self.engine.input_width(model) == 4

    def test_same_seed_same_weights(self):
        first = self.engine.build(small_architecture(), seed=3)
        second = self.engine.build(small_architecture(), seed=3)
        other = self.engine.build(small_architecture(), seed=4)

        np.testing.assert_array_equal(first.params[0][0], second.params[0][0])
        assert not np.array_equal(first.params[0][0], other.params[0][0])

    def test_softmax_outputs_are_distributions(self):
        model = self.engine.build(small_architecture(), seed=0)
        X = np.random.default_rng(0).normal(size=(10, 4)).astype(np.float32)

        outputs = self.engine.predict(model, X)

        assert outputs.shape == (10, 3)
        np.testing.assert_allclose(outputs.sum(axis=1), np.ones(10), rtol=1e-5)

    def test_empty_input(self):
        model = self.engine.build(small_architecture(), seed=0)
        assert self.engine.predict(model, np.zeros((0, 4))).shape == (0, 3)

    def test_wrong_width(self):
        model = self.engine.build(small_architecture(), seed=0)
        with pytest.raises(DimensionMismatchError):
            self.engine.predict(model, np.zeros((2, 5)))


class TestTrainingPieces:
    """Optimizers, losses and metrics."""

    @pytest.mark.parametrize("name", ["adam", "rms_prop", "sgd", "adagrad", "adamax", "nadam"])
    def test_optimizers(self, name):
        optimizer = create_optimizer(name, 0.01)
        assert isinstance(optimizer, optax.GradientTransformation)

    def test_unknown_optimizer(self):
        with pytest.raises(ConfigurationError):
            create_optimizer("lbfgs")

    def test_losses(self):
        outputs = jnp.array([[1.0], [3.0]])
        targets = jnp.array([[0.0], [1.0]])

        assert float(loss_function(Loss.MSE)(outputs, targets)) == pytest.approx(2.5)
        assert float(loss_function(Loss.MAE)(outputs, targets)) == pytest.approx(1.5)

    def test_crossentropy_is_finite_at_extremes(self):
        bce = loss_function(Loss.BINARY_CROSSENTROPY)(jnp.array([[0.0], [1.0]]), jnp.array([[1.0], [0.0]]))
        cce = loss_function(Loss.CATEGORICAL_CROSSENTROPY)(
            jnp.array([[0.0, 1.0]]), jnp.array([[1.0, 0.0]])
        )
        assert np.isfinite(float(bce))
        assert np.isfinite(float(cce))

    def test_metrics(self):
        name, metric = metric_function(OutcomeMode.MULTICLASS)
        value = metric(jnp.array([[0.9, 0.1], [0.2, 0.8]]), jnp.array([[1.0, 0.0], [1.0, 0.0]]))

        assert name == "accuracy"
        assert float(value) == pytest.approx(0.5)
        assert metric_function(OutcomeMode.CONTINUOUS)[0] == "mae"


class TestJaxFit:
    """Training through the public API with the JAX engine."""

    def test_cut_scenario_end_to_end(self, scenario_frame):
        artifact = fn.fit_formula(
            "cut(y, c(-1,0,1,10)) ~ x1 + x2",
            scenario_frame,
            layers=SMALL_LAYERS,
            Nepochs=3,
            batch_size=16,
            seed=1,
        )

        assert artifact.engine_name == "jax"
        assert artifact.model.output_units == 3
        assert artifact.model.epochs_trained == 3
        assert set(artifact.history) == {"loss", "accuracy", "val_loss", "val_accuracy"}
        assert all(len(values) == 3 for values in artifact.history.values())
        assert artifact.validation_outputs.shape == (20, 3)
        np.testing.assert_allclose(artifact.validation_outputs.sum(axis=1), np.ones(20), rtol=1e-5)
        assert 0.0 <= artifact.evaluation.accuracy <= 1.0

    def test_default_layers(self, scenario_frame):
        artifact = fn.fit_formula("cut(y, c(-1,0,1,10)) ~ x1 + x2", scenario_frame, Nepochs=2, seed=0)

        assert [l.units for l in artifact.architecture.layers] == [256, 128, 3]
        assert artifact.epochs_run == 2

    def test_binary_outcome_is_learnable(self, binary_frame):
        artifact = fn.fit_formula(
            "label ~ x1 + x2",
            binary_frame,
            layers={"units": [16, "auto"], "activation": ["relu", "sigmoid"]},
            Nepochs=40,
            batch_size=16,
            learning_rate=0.01,
            seed=0,
        )

        assert artifact.history["loss"][-1] < artifact.history["loss"][0]
        assert artifact.evaluation.accuracy >= 0.85

    def test_same_seed_same_history(self, binary_frame):
        kwargs = dict(layers=SMALL_LAYERS, Nepochs=3, seed=7)
        first = fn.fit_formula("label ~ x1 + x2 + group", binary_frame, **kwargs)
        second = fn.fit_formula("label ~ x1 + x2 + group", binary_frame, **kwargs)

        assert first.history["loss"] == pytest.approx(second.history["loss"])
        np.testing.assert_allclose(first.validation_outputs, second.validation_outputs, rtol=1e-6)

    def test_continuous_outcome(self, scenario_frame):
        artifact = fn.fit_formula(
            "y ~ x1 + x2",
            scenario_frame,
            layers={"units": [8, "auto"], "activation": ["relu", "linear"]},
            Nepochs=5,
            optimizer="rmsprop",
            seed=0,
        )

        assert set(artifact.history) == {"loss", "mae", "val_loss", "val_mae"}
        assert np.isfinite(artifact.evaluation.rmse)
        assert artifact.evaluation.mae <= artifact.evaluation.rmse + 1e-9

    def test_mae_loss_override(self, scenario_frame):
        artifact = fn.fit_formula(
            "y ~ x1", scenario_frame,
            layers={"units": [4, "auto"], "activation": ["tanh", "linear"]},
            Nepochs=2, loss="mae", seed=0,
        )
        assert artifact.architecture.loss == Loss.MAE

    def test_predict_new_records(self, scenario_frame):
        artifact = fn.fit_formula(
            "cut(y, c(-1,0,1,10)) ~ x1 + x2", scenario_frame, layers=SMALL_LAYERS, Nepochs=2, seed=0
        )

        result = fn.predict(artifact, scenario_frame[["x1", "x2"]].head(5))

        probabilities = result.filter(like="probability_")
        assert probabilities.shape == (5, 3)
        np.testing.assert_allclose(probabilities.sum(axis=1), np.ones(5), rtol=1e-5)
        assert set(result["prediction"]) <= set(artifact.encoding.levels)

    def test_external_jax_model(self, scenario_frame):
        engine = JaxTrainingEngine()
        model = engine.build(small_architecture(input_width=4), seed=0)

        artifact = fn.fit_formula(
            "cut(y, c(-1,0,1,10)) ~ x1 + x2", scenario_frame, model=model, engine=engine, Nepochs=2
        )
        fn.fit_formula("cut(y, c(-1,0,1,10)) ~ x1 + x2", scenario_frame, model=model, engine=engine,
                       Nepochs=1)

        assert artifact.architecture is None
        assert model.epochs_trained == 3

    def test_orchestrator_direct(self, scenario_frame):
        compiler = fn.FormulaCompiler()
        evaluated = compiler.compile("cut(y, c(-1,0,1,10)) ~ x1 + x2", scenario_frame)
        design = fn.DesignMatrixBuilder().fit(evaluated)
        encoding = fn.OutcomeEncoder().fit(evaluated.outcome)
        architecture = small_architecture(design.width, encoding)

        run = fn.TrainingOrchestrator().train(
            design, encoding.encode(evaluated.outcome), encoding, architecture,
            HyperParameters(Nepochs=2, seed=0),
        )

        assert run.n_train == 80
        assert run.n_validation == 20
        assert set(run.final_metrics()) == {"loss", "accuracy", "val_loss", "val_accuracy"}
