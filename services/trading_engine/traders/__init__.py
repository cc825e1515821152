from .paper_trader import PaperExecutionGateway

__all__ = ["PaperExecutionGateway"]
