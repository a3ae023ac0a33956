from .dashboard import DeploymentDashboard

__all__ = ["DeploymentDashboard"]
