# tradeutils/math_utils.py
import numpy as np


def shannon_entropy(weights):
    """
    H = -sum(w * log(w)) over w > 0, natural log.
    0 * log(0) is taken as 0, so zero weights are simply skipped.
    """
    w = np.asarray(weights, dtype=float)
    w = w[w > 0]
    if w.size == 0:
        return 0.0
    return float(-np.sum(w * np.log(w)))


def discounted_returns(rewards, discount):
    """
    Computes G_t = r_t + discount * G_{t+1} backwards over an episode.

    Args:
        rewards: Sequence of per-step rewards r_0 .. r_{T-1}.
        discount: Discount factor gamma in [0, 1].

    Returns:
        Array of returns G_0 .. G_{T-1}, same length as rewards.
    """
    rewards = np.asarray(rewards, dtype=float)
    returns = np.zeros_like(rewards)
    g = 0.0
    for t in range(len(rewards) - 1, -1, -1):
        g = rewards[t] + discount * g
        returns[t] = g
    return returns


def moving_average(values, window):
    """
    Trailing mean over the last `window` values, defined from the first point.
    The first entries average whatever history exists, so out[0] == values[0].
    """
    values = np.asarray(values, dtype=float)
    out = np.zeros_like(values)
    for i in range(len(values)):
        lo = max(0, i - window + 1)
        out[i] = values[lo:i + 1].mean()
    return out


def softmax(logits):
    z = np.asarray(logits, dtype=float)
    z = z - np.max(z) # Shift for numerical stability
    e = np.exp(z)
    return e / e.sum()


def running_max_drawdown(values):
    """
    Largest (peak - value) / peak over the series, peak being the running max.
    Points where the peak is not positive are skipped. Result clamped to [0, 1];
    values above 1 would mean the portfolio went negative.
    """
    max_dd = 0.0
    peak = None
    for v in values:
        if peak is None or v > peak:
            peak = v
        if peak > 0:
            dd = (peak - v) / peak
            if dd > max_dd:
                max_dd = dd
    return float(np.clip(max_dd, 0.0, 1.0))
