"""
Recurrent Layers
================

Vanilla RNN and GRU layers with backpropagation through time (BPTT).

Both layers process one sequence per call: the input is a single matrix of
shape (time_steps, input_size), one time step per row. The hidden state is a
vector of size hidden_size that survives between forward calls, so a long
sequence can be fed in chunks. Call reset_state() (or Model.reset_states())
to start a new, unrelated sequence.

Output modes:
- output_sequence=True: every hidden state goes through a dense output
  projection, output shape (time_steps, output_size)
- output_sequence=False: only the final hidden state, shape (1, hidden_size)
"""

import numpy as np

from .activations import Softmax, get_activation
from .layers import Layer
from .tensor import Tensor, as_matrix


class _Recurrent(Layer):
    """Shared state handling and output projection for RNN and GRU."""

    def __init__(self, input_size, hidden_size, output_size=None, activation='tanh',
                 output_sequence=True):
        super().__init__()

        self.input_size = input_size
        self.hidden_size = hidden_size
        self.output_size = output_size if output_size is not None else hidden_size
        self.output_sequence = output_sequence

        self.activation = get_activation(activation)
        if isinstance(self.activation, Softmax):
            raise ValueError("Recurrent layers need an element-wise activation, not softmax")

        self.hidden_state = np.zeros(hidden_size)
        self.grad_initial_state = None

    def _input_weights(self, *names):
        scale = np.sqrt(1.0 / self.input_size)
        for name in names:
            self.params[name] = np.random.randn(self.hidden_size, self.input_size) * scale

    def _hidden_weights(self, *names):
        scale = np.sqrt(1.0 / self.hidden_size)
        for name in names:
            self.params[name] = np.random.randn(self.hidden_size, self.hidden_size) * scale

    def _output_weights(self):
        if self.output_sequence:
            scale = np.sqrt(1.0 / self.hidden_size)
            self.params['W_o'] = np.random.randn(self.output_size, self.hidden_size) * scale
            self.params['b_o'] = np.zeros(self.output_size)

    def reset_state(self):
        """Zero the hidden state carried between forward calls."""
        self.hidden_state = np.zeros(self.hidden_size)

    def _check_input(self, x):
        x = as_matrix(x)
        if x.shape[0] == 0:
            raise ValueError(f"{self.__class__.__name__} received an empty sequence")
        if x.shape[1] != self.input_size:
            raise ValueError(f"{self.__class__.__name__} expects {self.input_size} input features, "
                             f"got {x.shape[1]}")
        return x

    def _project(self, hidden_states):
        """Output of the layer from the (time_steps, hidden) states."""
        if self.output_sequence:
            return Tensor(hidden_states @ self.params['W_o'].T + self.params['b_o'])
        return Tensor(hidden_states[-1:].copy())

    def _hidden_grads(self, grad_output, hidden_states):
        """
        Per-step gradient arriving at each hidden state from the output.

        Also fills the output projection gradients in sequence mode.

        Returns:
            dh_out: (time_steps, hidden) gradient from the output path
        """
        grad = as_matrix(grad_output)
        steps = hidden_states.shape[0]

        if self.output_sequence:
            if grad.shape != (steps, self.output_size):
                raise ValueError(f"{self.__class__.__name__} gradient shape {grad.shape} does not "
                                 f"match output {(steps, self.output_size)}")
            self.grads['W_o'][...] = grad.T @ hidden_states
            self.grads['b_o'][...] = np.sum(grad, axis=0)
            return grad @ self.params['W_o']

        if grad.shape != (1, self.hidden_size):
            raise ValueError(f"{self.__class__.__name__} gradient shape {grad.shape} does not "
                             f"match output {(1, self.hidden_size)}")
        # Only the final hidden state reaches the output
        dh_out = np.zeros((steps, self.hidden_size))
        dh_out[-1] = grad[0]
        return dh_out

    def _zero_grads(self):
        for grad in self.grads.values():
            grad.fill(0.0)

    def get_buffers(self):
        return {'hidden_state': self.hidden_state}

    def set_buffers(self, buffers):
        if 'hidden_state' in buffers:
            self.hidden_state = np.array(buffers['hidden_state'], dtype=np.float64)

    def get_config(self):
        return {
            'input_size': self.input_size,
            'hidden_size': self.hidden_size,
            'output_size': self.output_size,
            'activation': self.activation.name,
            'activation_config': self.activation.get_config(),
            'output_sequence': self.output_sequence,
        }


class RNNLayer(_Recurrent):
    """
    Vanilla (Elman) recurrent layer.

    Args:
        input_size: Features per time step (D)
        hidden_size: Size of the hidden state (H)
        output_size: Size of the output projection (default: hidden_size)
        activation: Hidden activation (default: 'tanh')
        output_sequence: Return the projected output of every step (True) or
            just the final hidden state (False)

    Forward, for each step t:
        a_t = W_h x_t + U_h h_t + b_h
        h_{t+1} = f(a_t)
        o_t = W_o h_{t+1} + b_o

    Backward (BPTT), from the last step to the first:
        delta_t = (dL/dh_{t+1} + U_h^T delta_{t+1}) * f'(a_t)
        dL/dW_h += delta_t x_t^T,  dL/dU_h += delta_t h_t^T,  dL/db_h += delta_t
        dL/dx_t = W_h^T delta_t
    """

    name = 'rnn'

    def __init__(self, input_size, hidden_size, output_size=None, activation='tanh',
                 output_sequence=True):
        super().__init__(input_size, hidden_size, output_size, activation, output_sequence)

        self._input_weights('W_h')
        self._hidden_weights('U_h')
        self.params['b_h'] = np.zeros(hidden_size)
        self._output_weights()
        self._init_grads()

    def forward(self, x):
        """
        Run the sequence through the layer.

        Args:
            x: Tensor or array of shape (time_steps, input_size)
        """
        x = self._check_input(x)
        W_h, U_h, b_h = self.params['W_h'], self.params['U_h'], self.params['b_h']

        h = self.hidden_state.copy()
        previous = []       # h_t entering each step
        pre_activations = []
        states = []         # h_{t+1} leaving each step

        for x_t in x:
            a = W_h @ x_t + U_h @ h + b_h
            previous.append(h)
            h = self.activation.forward(a)
            pre_activations.append(a)
            states.append(h)

        self.hidden_state = h.copy()

        # Cache for backward pass
        self.cache['x'] = x.copy()
        self.cache['h_prev'] = np.array(previous)
        self.cache['a'] = np.array(pre_activations)
        self.cache['h'] = np.array(states)

        self._mark_forwarded()
        return self._project(self.cache['h'])

    def backward(self, grad_output):
        """
        Backpropagation through time.

        Returns:
            Tensor of shape (time_steps, input_size); the gradient w.r.t. the
            initial hidden state is stored in grad_initial_state.
        """
        self._require_forward()
        x = self.cache['x']
        h_prev = self.cache['h_prev']
        a = self.cache['a']

        self._zero_grads()
        dh_out = self._hidden_grads(grad_output, self.cache['h'])

        W_h, U_h = self.params['W_h'], self.params['U_h']
        grad_input = np.zeros_like(x)
        dh_next = np.zeros(self.hidden_size)

        for t in reversed(range(x.shape[0])):
            dh = dh_out[t] + dh_next
            delta = dh * self.activation.derivative(a[t])

            self.grads['W_h'] += np.outer(delta, x[t])
            self.grads['U_h'] += np.outer(delta, h_prev[t])
            self.grads['b_h'] += delta

            grad_input[t] = W_h.T @ delta
            dh_next = U_h.T @ delta

        self.grad_initial_state = dh_next
        return Tensor(grad_input)

    def __repr__(self):
        return (f"RNNLayer({self.input_size}, {self.hidden_size}, output_size={self.output_size}, "
                f"activation={self.activation.name})")


class GRULayer(_Recurrent):
    """
    Gated Recurrent Unit layer.

    Args:
        input_size: Features per time step (D)
        hidden_size: Size of the hidden state (H)
        output_size: Size of the output projection (default: hidden_size)
        activation: Candidate activation g (default: 'tanh')
        gate_activation: Gate activation sigma (default: 'sigmoid')
        output_sequence: Return the projected output of every step (True) or
            just the final hidden state (False)

    Forward, for each step t:
        z_t = sigma(W_z x_t + U_z h_{t-1} + b_z)              update gate
        r_t = sigma(W_r x_t + U_r h_{t-1} + b_r)              reset gate
        h~_t = g(W_h x_t + U_h (r_t * h_{t-1}) + b_h)         candidate
        h_t = (1 - z_t) * h_{t-1} + z_t * h~_t

    Backward: h_{t-1} feeds h_t directly (through 1 - z_t), through both
    gates and through the reset-scaled candidate input, so dL/dh_{t-1}
    collects all four contributions.
    """

    name = 'gru'

    def __init__(self, input_size, hidden_size, output_size=None, activation='tanh',
                 gate_activation='sigmoid', output_sequence=True):
        super().__init__(input_size, hidden_size, output_size, activation, output_sequence)

        self.gate_activation = get_activation(gate_activation)
        if isinstance(self.gate_activation, Softmax):
            raise ValueError("GRU gates need an element-wise activation, not softmax")

        self._input_weights('W_z', 'W_r', 'W_h')
        self._hidden_weights('U_z', 'U_r', 'U_h')
        for name in ('b_z', 'b_r', 'b_h'):
            self.params[name] = np.zeros(hidden_size)
        self._output_weights()
        self._init_grads()

    def forward(self, x):
        """
        Run the sequence through the layer.

        Args:
            x: Tensor or array of shape (time_steps, input_size)
        """
        x = self._check_input(x)
        p = self.params

        h = self.hidden_state.copy()
        steps = {'h_prev': [], 'a_z': [], 'a_r': [], 'a_h': [], 'z': [], 'r': [], 'h_tilde': [], 'h': []}

        for x_t in x:
            a_z = p['W_z'] @ x_t + p['U_z'] @ h + p['b_z']
            a_r = p['W_r'] @ x_t + p['U_r'] @ h + p['b_r']
            z = self.gate_activation.forward(a_z)
            r = self.gate_activation.forward(a_r)

            a_h = p['W_h'] @ x_t + p['U_h'] @ (r * h) + p['b_h']
            h_tilde = self.activation.forward(a_h)

            h_new = (1 - z) * h + z * h_tilde

            for key, value in (('h_prev', h), ('a_z', a_z), ('a_r', a_r), ('a_h', a_h),
                               ('z', z), ('r', r), ('h_tilde', h_tilde), ('h', h_new)):
                steps[key].append(value)
            h = h_new

        self.hidden_state = h.copy()

        # Cache for backward pass
        self.cache = {key: np.array(values) for key, values in steps.items()}
        self.cache['x'] = x.copy()

        self._mark_forwarded()
        return self._project(self.cache['h'])

    def backward(self, grad_output):
        """
        Backpropagation through time.

        Returns:
            Tensor of shape (time_steps, input_size); the gradient w.r.t. the
            initial hidden state is stored in grad_initial_state.
        """
        self._require_forward()
        c = self.cache
        p = self.params
        g = self.grads
        x = c['x']

        self._zero_grads()
        dh_out = self._hidden_grads(grad_output, c['h'])

        grad_input = np.zeros_like(x)
        dh_next = np.zeros(self.hidden_size)

        for t in reversed(range(x.shape[0])):
            dh = dh_out[t] + dh_next
            h_prev, z, r = c['h_prev'][t], c['z'][t], c['r'][t]

            # Candidate path
            da_h = dh * z * self.activation.derivative(c['a_h'][t])
            # Update gate path
            da_z = dh * (c['h_tilde'][t] - h_prev) * self.gate_activation.derivative(c['a_z'][t])
            # Reset gate path, through U_h (r * h_prev)
            d_rh = p['U_h'].T @ da_h
            da_r = d_rh * h_prev * self.gate_activation.derivative(c['a_r'][t])

            g['W_h'] += np.outer(da_h, x[t])
            g['U_h'] += np.outer(da_h, r * h_prev)
            g['b_h'] += da_h
            g['W_z'] += np.outer(da_z, x[t])
            g['U_z'] += np.outer(da_z, h_prev)
            g['b_z'] += da_z
            g['W_r'] += np.outer(da_r, x[t])
            g['U_r'] += np.outer(da_r, h_prev)
            g['b_r'] += da_r

            grad_input[t] = p['W_z'].T @ da_z + p['W_r'].T @ da_r + p['W_h'].T @ da_h

            dh_next = (dh * (1 - z)
                       + d_rh * r
                       + p['U_z'].T @ da_z
                       + p['U_r'].T @ da_r)

        self.grad_initial_state = dh_next
        return Tensor(grad_input)

    def get_config(self):
        config = super().get_config()
        config['gate_activation'] = self.gate_activation.name
        config['gate_activation_config'] = self.gate_activation.get_config()
        return config

    def __repr__(self):
        return (f"GRULayer({self.input_size}, {self.hidden_size}, output_size={self.output_size}, "
                f"activation={self.activation.name})")
