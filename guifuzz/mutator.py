"""
Mutation engine: build a new fuzz input from the corpus.

A seed input is copied into a private list and transformed by 1 to 32
passes, each pass picking one of five operators. Donor inputs and the
registry of known actions come from a MutationPool snapshot, so stored
corpus inputs are never modified.
"""

from guifuzz.action import make_input

# Upper bound used to draw the length of a range
MAX_RANGE_BOUND = 64


class Mutator:
    def __init__(self, rng):
        self.rng = rng
        self.operators = (
            self.splice,
            self.delete,
            self.repeat,
            self.insert_slice,
            self.insert_known_action,
        )

    def pick_range(self, length):
        """
        Pick a random [start, end) range of a sequence of `length` items.
        The range length is drawn as r % (r % 64 + 1).
        """
        rand = self.rng.rand
        start = rand() % length
        size = rand() % (rand() % MAX_RANGE_BOUND + 1)
        return start, min(start + size, length)

    def pick_donor(self, pool):
        donor = pool.inputs[self.rng.rand() % len(pool.inputs)]
        if not donor:
            return None
        start, end = self.pick_range(len(donor))
        return donor[start:end]

    def splice(self, actions, pool):
        """Replace a random range of the input with a range of a donor."""
        if not actions:
            return
        start, end = self.pick_range(len(actions))
        donor = self.pick_donor(pool)
        if donor is None:
            return
        actions[start:end] = donor

    def delete(self, actions, pool=None):
        """Remove a random range of the input."""
        if not actions:
            return
        start, end = self.pick_range(len(actions))
        del actions[start:end]

    def repeat(self, actions, pool=None):
        """Insert copies of a random action next to itself."""
        if not actions:
            return
        rand = self.rng.rand
        index = rand() % len(actions)
        count = rand() % (rand() % MAX_RANGE_BOUND + 1)
        actions[index:index] = [actions[index]] * count

    def insert_slice(self, actions, pool):
        """Insert a range of a donor input at a random index."""
        if not actions:
            return
        index = self.rng.rand() % len(actions)
        donor = self.pick_donor(pool)
        if donor is None:
            return
        actions[index:index] = donor

    def insert_known_action(self, actions, pool):
        """Insert an action already seen in the corpus at a random index."""
        if not actions or not pool.unique_actions:
            return
        rand = self.rng.rand
        action = pool.unique_actions[rand() % len(pool.unique_actions)]
        actions.insert(rand() % len(actions), action)

    def mutate(self, pool):
        """
        Mutate a random input of the pool and return the new fuzz input.
        """
        if not pool.inputs:
            raise ValueError("Unable to mutate: the corpus is empty")
        rand = self.rng.rand
        actions = list(pool.inputs[rand() % len(pool.inputs)])
        for _ in range((rand() & 0x1F) + 1):
            operator = self.operators[rand() % len(self.operators)]
            operator(actions, pool)
        return make_input(actions)
