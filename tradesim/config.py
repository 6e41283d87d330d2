# tradesim/config.py

# Market Parameters (defaults)
MU = 0.0001 # Expected log-return per step (1 bp)
SIGMA = 0.02 # 2% per-step volatility
INITIAL_PRICE = 100.0
SLIPPAGE_FACTOR = 0.01 # Relative impact per share
OBSERVATION_NOISE = 0.005 # 0.5% multiplicative noise on observed price

# Price process
DT = 1.0 # One step per update
PRICE_FLOOR = 0.01 # Prices never fall below this

# Belief Engine
BELIEF_OBS_SIGMA = 0.005 # Likelihood noise scale (absolute price units)
PRIOR_SUM_TOL = 1e-6
BELIEF_SUM_TOL = 1e-8
NEGATIVE_WEIGHT_TOL = 1e-12 # Round-off allowed before a negative weight is a bug

# Agent-side belief tracking
AGENT_BELIEF_SIGMA = 1.0 # Agents model observation noise in price units
AGENT_BELIEF_STATES = 41
AGENT_BELIEF_WIDTH = 0.10 # Support spans +/- 10% around the centre
AGENT_BELIEF_DIFFUSION = 0.05 # Mixing with uniform before each update
AGENT_BELIEF_VOLATILITY = 0.02

# Discretization
N_BINS = 20
RELATIVE_BIN_LOW = 0.5 # discretize_relative covers [0.5, 1.5] x reference
RELATIVE_BIN_HIGH = 1.5

# Metrics
TRADING_DAYS = 252 # One step ~ one trading day

# Agents
INITIAL_CASH = 10000.0
LOT_SIZE = 10

# Q-Learning
Q_LEARNING_RATE = 0.1
Q_DISCOUNT = 0.95
Q_EPSILON = 0.1
Q_VALUE_CLIP = 1000.0
EPSILON_DECAY = 0.995
EPSILON_MIN = 0.01
REPLAY_CAPACITY = 10000
REPLAY_MIN_SIZE = 32
REPLAY_BATCH = 16

# Policy Gradient
PG_LEARNING_RATE = 0.01
PG_DISCOUNT = 0.95
PG_BASELINE_MOMENTUM = 0.9
PG_GRAD_CLIP = 10.0
PG_INIT_SCALE = 0.1

# Baseline heuristics
BASELINE_WINDOW = 20
MOMENTUM_THRESHOLD = 0.01
MEAN_REVERSION_THRESHOLD = 0.02
MEAN_REVERSION_MIN_HISTORY = 5

# Simulation / Training
PROGRESS_LOG_INTERVAL = 100 # steps
TRAINING_LOG_INTERVAL = 10 # episodes
LEARNING_CURVE_WINDOW = 10
