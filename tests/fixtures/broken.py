"""Modules with declaration or runtime problems."""
from modularity import ModuleBase, depends_on


class CycleAModule(ModuleBase):
    pass


@depends_on(CycleAModule)
class CycleBModule(ModuleBase):
    pass


depends_on(CycleBModule)(CycleAModule)


class NotAModule:
    pass


@depends_on(NotAModule)
class MissingDependencyModule(ModuleBase):
    pass


class HealthyModule(ModuleBase):
    pass


@depends_on(HealthyModule)
class FailingModule(ModuleBase):
    async def initialize(self, context) -> None:
        raise RuntimeError("database unreachable")


class BrokenShutdownModule(ModuleBase):
    async def shutdown(self, context) -> None:
        raise RuntimeError("flush failed")
