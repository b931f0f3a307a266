from adapters.weatherstack.adapter import WeatherstackAction, WeatherstackAdapter

__all__ = ["WeatherstackAction", "WeatherstackAdapter"]
