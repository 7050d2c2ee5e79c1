"""Layer correctness against torch reference implementations.

Each layer is checked on the host path against an independent torch
computation, and the accelerated path is checked against the host path.
"""

import numpy as np
import pytest
import torch
import torch.nn.functional as F

from kerasrt import activations
from kerasrt.errors import InvalidInputError, UnknownActivationError
from kerasrt.layers import (
    Activation, BatchNormalization, Bidirectional, Dense, Dropout, Flatten,
    InputLayer, Merge, Permute, RepeatVector, Reshape, SimpleRNN, TimeDistributed,
)
from kerasrt.tensor import Backend, Tensor


def _t(array):
    return Tensor.from_array(np.asarray(array, dtype=np.float32))


def _weights(*arrays):
    return [_t(a) for a in arrays]


def _randn(rng, *shape):
    return rng.standard_normal(shape).astype(np.float32)


def _rnn(rng, n_in, units, **kwargs):
    layer = SimpleRNN(output_dim=units, **kwargs)
    W, U, b = _randn(rng, n_in, units), _randn(rng, units, units), _randn(rng, units)
    layer.set_weights(_weights(W, U, b))
    return layer, (W, U, b)


def _torch_rnn(params, x, reverse=False):
    """Reference tanh RNN over x of shape (T, n_in). Returns (T, units) outputs."""
    W, U, b = params
    rnn = torch.nn.RNN(W.shape[0], W.shape[1], batch_first=True)
    with torch.no_grad():
        rnn.weight_ih_l0.copy_(torch.from_numpy(W.T))
        rnn.weight_hh_l0.copy_(torch.from_numpy(U.T))
        rnn.bias_ih_l0.copy_(torch.from_numpy(b))
        rnn.bias_hh_l0.zero_()
        seq = torch.from_numpy(x[::-1].copy() if reverse else x)
        out, _ = rnn(seq.unsqueeze(0))
    return out[0].numpy()


# ---------------------------------------------------------------------------
# Dense / Activation
# ---------------------------------------------------------------------------

class TestDense:

    @pytest.mark.parametrize("activation", ["linear", "relu", "sigmoid", "tanh", "softmax"])
    def test_matches_torch_linear(self, rng, activation):
        W, b = _randn(rng, 5, 3), _randn(rng, 3)
        x = _randn(rng, 5)
        layer = Dense(name="d", output_dim=3, activation=activation)
        layer.set_weights(_weights(W, b))

        out = layer.call(_t(x))

        ref = F.linear(torch.from_numpy(x), torch.from_numpy(W.T), torch.from_numpy(b))
        ref = {"linear": lambda y: y, "relu": torch.relu, "sigmoid": torch.sigmoid,
               "tanh": torch.tanh, "softmax": lambda y: torch.softmax(y, -1)}[activation](ref)
        assert out.shape == (3,)
        np.testing.assert_allclose(out.array, ref.numpy(), rtol=1e-5, atol=1e-6)

    def test_no_bias(self, rng):
        W, x = _randn(rng, 4, 2), _randn(rng, 4)
        layer = Dense(name="d", output_dim=2, bias=False)
        layer.set_weights(_weights(W))

        np.testing.assert_allclose(layer.call(_t(x)).array, x @ W, rtol=1e-5)

    def test_accelerated_matches_host(self, rng):
        W, b, x = _randn(rng, 6, 4), _randn(rng, 4), _randn(rng, 6)
        host = Dense(name="d", output_dim=4, activation="relu")
        accel = Dense(name="d", output_dim=4, activation="relu", accelerate=True)
        for layer in (host, accel):
            layer.set_weights(_weights(W, b))

        out = accel.call(_t(x))

        assert out.backend is Backend.HOST
        np.testing.assert_allclose(out.array, host.call(_t(x)).array, rtol=1e-5, atol=1e-6)

    def test_pipeline_keeps_result_on_device(self, rng):
        layer = Dense(name="d", output_dim=2, accelerate=True, pipeline=True)
        layer.set_weights(_weights(_randn(rng, 3, 2), _randn(rng, 2)))

        out = layer.call(_t(_randn(rng, 3)))

        assert out.backend is Backend.ACCELERATED
        assert out.shape == (2,)
        assert out.actual_shape == (1, 2)

    def test_weight_shape_checked(self):
        layer = Dense(name="d", output_dim=2, input_dim=3)
        with pytest.raises(ValueError, match="weight 'W'"):
            layer.set_weights(_weights(np.ones((4, 2)), np.ones(2)))

    def test_weight_count_checked(self):
        with pytest.raises(ValueError, match="expects 2 weights"):
            Dense(name="d", output_dim=2).set_weights(_weights(np.ones((4, 2))))

    def test_input_not_modified(self, rng):
        layer = Dense(name="d", output_dim=3)
        layer.set_weights(_weights(np.eye(3), np.zeros(3)))
        x = _t([1, 2, 3])

        out = layer.call(x)
        out.buffer[:] = 0

        np.testing.assert_array_equal(x.array, [1, 2, 3])


class TestActivation:

    @pytest.mark.parametrize("name", sorted(activations.HOST_ACTIVATIONS))
    def test_host_and_accelerated_agree(self, rng, name):
        x = _randn(rng, 2, 5)
        host = Activation(activation=name)
        accel = Activation(activation=name, accelerate=True)

        np.testing.assert_allclose(accel.call(_t(x)).array, host.call(_t(x)).array,
                                   rtol=1e-5, atol=1e-6)

    @pytest.mark.parametrize("spelling", ["hard_sigmoid", "hardSigmoid", "HardSigmoid"])
    def test_spellings_resolve(self, spelling):
        assert activations.resolve(spelling) == "hard_sigmoid"

    def test_none_is_linear(self):
        assert activations.resolve(None) == "linear"

    def test_unknown(self):
        with pytest.raises(UnknownActivationError, match="mish"):
            Activation(activation="mish")

    def test_linear_returns_new_buffer(self):
        x = _t([1, -1])
        out = Activation(activation="linear").call(x)
        assert not np.shares_memory(out.buffer, x.buffer)


# ---------------------------------------------------------------------------
# Shape layers
# ---------------------------------------------------------------------------

class TestShapeLayers:

    def test_input_layer_checks_size(self):
        layer = InputLayer(name="in", shape=(2, 3))
        x = _t(np.zeros(6))
        assert layer.call(x) is x
        with pytest.raises(InvalidInputError):
            layer.call(_t(np.zeros(5)))

    def test_dropout_is_identity_copy(self):
        x = _t([1, 2, 3])
        for layer in (Dropout(), Dropout(accelerate=True)):
            out = layer.call(x)
            np.testing.assert_array_equal(out.array, [1, 2, 3])
            assert not np.shares_memory(out.buffer, x.buffer)

    def test_flatten(self):
        out = Flatten().call(_t(np.arange(6).reshape(2, 3)))
        assert out.shape == (6,)

    @pytest.mark.parametrize("target, expected", [((3, 2), (3, 2)), ((-1, 2), (3, 2)),
                                                  ((6,), (6,)), ((2, -1), (2, 3))])
    def test_reshape(self, target, expected):
        out = Reshape(target_shape=target).call(_t(np.arange(6)))
        assert out.shape == expected
        np.testing.assert_array_equal(out.buffer, np.arange(6))

    def test_permute_is_one_based(self):
        x = np.arange(12, dtype=np.float32).reshape(3, 4)
        out = Permute(dims=(2, 1)).call(_t(x))
        np.testing.assert_array_equal(out.array, x.T)

    def test_repeat_vector(self):
        out = RepeatVector(n=3).call(_t([1, 2]))
        np.testing.assert_array_equal(out.array, [[1, 2], [1, 2], [1, 2]])

    def test_host_only_layer_downloads_accelerated_input(self):
        x = _t(np.arange(6).reshape(2, 3)).to_accelerated()
        layer = Flatten(accelerate=True)

        out = layer.call(x)

        assert not layer.accelerate
        assert out.backend is Backend.HOST
        np.testing.assert_array_equal(out.array, np.arange(6))


# ---------------------------------------------------------------------------
# BatchNormalization
# ---------------------------------------------------------------------------

class TestBatchNormalization:

    def _layer(self, rng, **kwargs):
        gamma, beta, mean = _randn(rng, 4), _randn(rng, 4), _randn(rng, 4)
        var = np.abs(_randn(rng, 4)) + 0.1
        layer = BatchNormalization(epsilon=1e-3, **kwargs)
        layer.set_weights(_weights(gamma, beta, mean, var))
        return layer, (gamma, beta, mean, var)

    def test_matches_torch(self, rng):
        layer, (gamma, beta, mean, var) = self._layer(rng)
        x = _randn(rng, 3, 4)

        out = layer.call(_t(x))

        ref = F.batch_norm(torch.from_numpy(x), torch.from_numpy(mean), torch.from_numpy(var),
                           torch.from_numpy(gamma), torch.from_numpy(beta),
                           training=False, eps=1e-3)
        np.testing.assert_allclose(out.array, ref.numpy(), rtol=1e-5, atol=1e-5)

    def test_accelerated_matches_host(self, rng):
        host, params = self._layer(rng)
        accel = BatchNormalization(epsilon=1e-3, accelerate=True)
        accel.set_weights(_weights(*params))
        x = _randn(rng, 4)

        np.testing.assert_allclose(accel.call(_t(x)).array, host.call(_t(x)).array,
                                   rtol=1e-5, atol=1e-6)

    def test_parameter_shapes_must_agree(self):
        layer = BatchNormalization()
        with pytest.raises(ValueError, match="running_std"):
            layer.set_weights(_weights(np.ones(4), np.ones(4), np.ones(4), np.ones(3)))


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

class TestMerge:

    @pytest.mark.parametrize("mode, reduce", [
        ("sum", lambda xs: sum(xs)),
        ("mul", lambda xs: xs[0] * xs[1] * xs[2]),
        ("ave", lambda xs: sum(xs) / 3),
        ("max", lambda xs: np.maximum(np.maximum(xs[0], xs[1]), xs[2])),
    ])
    def test_elementwise_modes(self, rng, mode, reduce):
        xs = [_randn(rng, 2, 3) for _ in range(3)]

        host = Merge(mode=mode).call([_t(x) for x in xs])
        accel = Merge(mode=mode, accelerate=True).call([_t(x) for x in xs])

        np.testing.assert_allclose(host.array, reduce(xs), rtol=1e-5, atol=1e-6)
        np.testing.assert_allclose(accel.array, reduce(xs), rtol=1e-5, atol=1e-6)

    @pytest.mark.parametrize("concat_axis, axis", [(-1, -1), (2, 1), (1, 0)])
    def test_concat(self, rng, concat_axis, axis):
        a, b = _randn(rng, 2, 3), _randn(rng, 2, 3)

        for accelerate in (False, True):
            out = Merge(mode="concat", concat_axis=concat_axis,
                        accelerate=accelerate).call([_t(a), _t(b)])
            np.testing.assert_array_equal(out.array, np.concatenate([a, b], axis=axis))

    def test_concat_vectors(self):
        for accelerate in (False, True):
            out = Merge(mode="concat", accelerate=accelerate).call([_t([1, 2]), _t([3])])
            assert out.shape == (3,)
            np.testing.assert_array_equal(out.array, [1, 2, 3])

    def test_dot(self):
        for accelerate in (False, True):
            out = Merge(mode="dot", accelerate=accelerate).call([_t([1, 2, 3]), _t([4, 5, 6])])
            assert out.shape == (1,)
            np.testing.assert_array_equal(out.array, [32])

    def test_mixed_backend_inputs(self):
        out = Merge(mode="sum").call([_t([1, 2]).to_accelerated(), _t([3, 4])])
        np.testing.assert_array_equal(out.array, [4, 6])

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="equal input shapes"):
            Merge(mode="sum").call([_t([1, 2]), _t([1, 2, 3])])

    def test_needs_two_inputs(self):
        with pytest.raises(ValueError, match="at least 2"):
            Merge().call([_t([1])])

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="cos"):
            Merge(mode="cos")


# ---------------------------------------------------------------------------
# Recurrent and wrappers
# ---------------------------------------------------------------------------

class TestSimpleRNN:

    def test_last_state_matches_torch(self, rng):
        layer, params = _rnn(rng, 3, 4)
        x = _randn(rng, 5, 3)

        out = layer.call(_t(x))

        assert out.shape == (4,)
        np.testing.assert_allclose(out.array, _torch_rnn(params, x)[-1], rtol=1e-5, atol=1e-5)

    def test_sequences_match_torch(self, rng):
        layer, params = _rnn(rng, 3, 4, return_sequences=True)
        x = _randn(rng, 5, 3)

        out = layer.call(_t(x))

        assert out.shape == (5, 4)
        np.testing.assert_allclose(out.array, _torch_rnn(params, x), rtol=1e-5, atol=1e-5)

    def test_go_backwards_in_processing_order(self, rng):
        layer, params = _rnn(rng, 2, 3, return_sequences=True, go_backwards=True)
        x = _randn(rng, 4, 2)

        out = layer.call(_t(x))

        np.testing.assert_allclose(out.array, _torch_rnn(params, x, reverse=True),
                                   rtol=1e-5, atol=1e-5)

    def test_host_only(self):
        assert not SimpleRNN(output_dim=2, accelerate=True).accelerate


class TestBidirectional:

    def _layer(self, rng, return_sequences, merge_mode="concat"):
        forward, fw = _rnn(rng, 3, 2, return_sequences=return_sequences)
        backward, bw = _rnn(rng, 3, 2, return_sequences=return_sequences, go_backwards=True)
        layer = Bidirectional(forward_layer=forward, backward_layer=backward,
                              merge_mode=merge_mode, name="bi")
        layer.set_weights(_weights(*fw, *bw))
        return layer, fw, bw

    def test_concat_last_states(self, rng):
        layer, fw, bw = self._layer(rng, return_sequences=False)
        x = _randn(rng, 4, 3)

        out = layer.call(_t(x))

        expected = np.concatenate([_torch_rnn(fw, x)[-1], _torch_rnn(bw, x, reverse=True)[-1]])
        np.testing.assert_allclose(out.array, expected, rtol=1e-5, atol=1e-5)

    def test_sequences_aligned_in_time(self, rng):
        layer, fw, bw = self._layer(rng, return_sequences=True, merge_mode="sum")
        x = _randn(rng, 4, 3)

        out = layer.call(_t(x))

        expected = _torch_rnn(fw, x) + _torch_rnn(bw, x, reverse=True)[::-1]
        assert out.shape == (4, 2)
        np.testing.assert_allclose(out.array, expected, rtol=1e-5, atol=1e-5)

    def test_weights_split_between_directions(self, rng):
        layer, fw, bw = self._layer(rng, return_sequences=False)

        np.testing.assert_array_equal(layer.forward_layer.weights["U"].array, fw[1])
        np.testing.assert_array_equal(layer.backward_layer.weights["U"].array, bw[1])
        assert set(layer.weights) == {"forward_W", "forward_U", "forward_b",
                                      "backward_W", "backward_U", "backward_b"}


class TestTimeDistributed:

    def test_dense_per_timestep(self, rng):
        W, b = _randn(rng, 4, 3), _randn(rng, 3)
        inner = Dense(name="d", output_dim=3, activation="relu")
        layer = TimeDistributed(layer=inner, name="td")
        layer.set_weights(_weights(W, b))
        x = _randn(rng, 5, 4)

        out = layer.call(_t(x))

        assert out.shape == (5, 3)
        np.testing.assert_allclose(out.array, np.maximum(x @ W + b, 0), rtol=1e-5, atol=1e-6)

    def test_accelerated_inner_layer(self, rng):
        W, b = _randn(rng, 4, 3), _randn(rng, 3)
        inner = Dense(name="d", output_dim=3, accelerate=True, pipeline=True)
        layer = TimeDistributed(layer=inner, name="td", accelerate=True)
        layer.set_weights(_weights(W, b))
        x = _randn(rng, 2, 4)

        out = layer.call(_t(x))

        assert out.backend is Backend.HOST
        np.testing.assert_allclose(out.array, x @ W + b, rtol=1e-5, atol=1e-5)

    def test_toggle_reaches_inner_layer(self):
        layer = TimeDistributed(layer=Dense(name="d", output_dim=3), name="td")

        layer.toggle_acceleration(True)
        assert layer.layer.accelerate
        assert not layer.accelerate

        layer.toggle_acceleration(False)
        assert not layer.layer.accelerate

    def test_wrapper_preference_applied_at_construction(self):
        inner = Dense(name="d", output_dim=3, accelerate=True)
        TimeDistributed(layer=inner, name="td")
        assert not inner.accelerate


def test_bidirectional_toggle_reaches_both_directions():
    forward = Dense(name="forward_d", output_dim=2)
    backward = Dense(name="backward_d", output_dim=2)
    layer = Bidirectional(forward_layer=forward, backward_layer=backward, name="bi")

    layer.toggle_acceleration(True)

    assert forward.accelerate and backward.accelerate
