class NoRewardsAvailable(Exception):
    def __init__(self):
        super().__init__("No rewards to convert.")
