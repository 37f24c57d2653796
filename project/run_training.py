"""
Be sure you have minicnn installed in you Virtual Env.
>>> pip install -Ue .
"""
import logging
import random
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parent.parent))

import minicnn
from minicnn import ActivationKind, Network, TrainingConfig

logger = logging.getLogger("run_training")


def build_network(hidden_layers: int, rng: random.Random) -> Network:
    """Two hidden relu layers and one sigmoid output over (1 x 2 x 1) points."""
    network = Network(rng)
    network.set_input_format((1, 2, 1))
    network.set_output_format((1, 1, 1))
    network.add_fully_connected_layer(hidden_layers, ActivationKind.RELU)
    network.add_fully_connected_layer(hidden_layers, ActivationKind.RELU)
    network.add_last_fully_connected_layer(ActivationKind.SIGMOID)
    network.apply_noise(1.0)
    return network


def default_log_fn(epoch: int, avg_cost: float) -> None:
    if epoch % 10 == 0:
        logger.info("Epoch %d avg cost %f", epoch, avg_cost)


class NetworkTrain:
    def __init__(self, hidden_layers: int, seed: int = 0):
        self.hidden_layers = hidden_layers
        self.rng = random.Random(seed)
        self.network = build_network(hidden_layers, self.rng)

    def train(self, data, config: TrainingConfig, log_fn=default_log_fn):
        self.network = build_network(self.hidden_layers, self.rng)
        costs = self.network.train(data, config, log_fn)
        result = self.network.test(data)
        logger.info("Training done\n%s", result.to_string())
        return costs, result


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    PTS = 50
    HIDDEN = 8
    config = TrainingConfig(batch_size=10, epochs=200, learning_rate=0.5, seed=0)
    data = minicnn.datasets["Simple"](PTS, random.Random(config.seed))
    NetworkTrain(HIDDEN).train(data, config)
