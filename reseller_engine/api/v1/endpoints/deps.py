from reseller_engine.services.engine import ResellerEngine, build_engine


def get_engine() -> ResellerEngine:
    return build_engine()
