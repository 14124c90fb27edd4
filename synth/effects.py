"""Delay and reverb sends between the master level and the final output."""


class EffectsChain:
    """Dry path plus parallel delay (with feedback) and convolution reverb.

    input -> dry -> output
    input -> delay <-> feedback, delay -> delay mix -> output
    input -> convolver -> reverb mix -> output
    """

    MAX_DELAY = 1.0

    def __init__(self, graph, input_node, output_node):
        self.graph = graph

        self.delay_node = graph.create_delay(self.MAX_DELAY)
        self.delay_feedback = graph.create_gain()
        self.delay_mix = graph.create_gain()
        self.delay_node.delay_time.value = 0.2
        self.delay_feedback.gain.value = 0.3
        self.delay_mix.gain.value = 0.3

        self.convolver = graph.create_convolver()
        self.reverb_mix = graph.create_gain()
        self.reverb_mix.gain.value = 0.2

        self.dry_gain = graph.create_gain()
        self.dry_gain.gain.value = 1.0

        input_node.connect(self.dry_gain)
        self.dry_gain.connect(output_node)

        input_node.connect(self.delay_node)
        self.delay_node.connect(self.delay_feedback)
        self.delay_feedback.connect(self.delay_node)
        self.delay_node.connect(self.delay_mix)
        self.delay_mix.connect(output_node)

        input_node.connect(self.convolver)
        self.convolver.connect(self.reverb_mix)
        self.reverb_mix.connect(output_node)

    def set_delay_time(self, seconds: float):
        self.delay_node.delay_time.value = max(0.0, min(self.MAX_DELAY, float(seconds)))

    def set_delay_feedback(self, value: float):
        # Feedback stays below unity
        self.delay_feedback.gain.value = max(0.0, min(0.95, float(value)))

    def set_delay_mix(self, value: float):
        self.delay_mix.gain.value = max(0.0, min(1.0, float(value)))

    def set_reverb_size(self, value: float):
        self.convolver.size = max(0.0, min(1.0, float(value)))

    def set_reverb_damping(self, value: float):
        self.convolver.damping = max(0.0, min(1.0, float(value)))

    def set_reverb_mix(self, value: float):
        self.reverb_mix.gain.value = max(0.0, min(1.0, float(value)))
