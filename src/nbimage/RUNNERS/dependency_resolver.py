"""
Prerequisite resolution for pip layers.
"""
from typing import Dict, Iterable, List, Set

from ..exceptions import OrderingError
from ..MODELS.provisioning import normalize_project_name


class PrerequisiteResolver:
    """
    Resolves install order for packages whose build step needs other
    packages already installed.
    """
    def __init__(self, prerequisites: Dict[str, List[str]]):
        """
        :param prerequisites: Package name -> packages that must be installed first.
        """
        self.prerequisites: Dict[str, Set[str]] = {
            normalize_project_name(name): {normalize_project_name(d) for d in deps}
            for name, deps in prerequisites.items()
        }

    def requires(self, name: str) -> Set[str]:
        """Direct prerequisites of a package."""
        return self.prerequisites.get(normalize_project_name(name), set())

    def resolve_order(self, packages: Iterable[str]) -> List[str]:
        """
        Orders packages so that every prerequisite precedes its dependents,
        using a depth-first topological sort. Prerequisites not in
        `packages` are pulled in.

        :param packages: Packages to install.
        :return: Package names in install order.
        :raises OrderingError: If a circular prerequisite is detected.
        """
        ordered: List[str] = []
        visited: Set[str] = set()
        processing: Set[str] = set()

        def visit(name):
            if name in processing:
                raise OrderingError(f"Circular prerequisite detected involving {name}")
            if name in visited:
                return
            processing.add(name)
            for dep in sorted(self.prerequisites.get(name, ())):
                visit(dep)
            processing.remove(name)
            visited.add(name)
            ordered.append(name)

        for name in packages:
            visit(normalize_project_name(name))
        return ordered

    def install_layers(self, packages: Iterable[str]) -> List[List[str]]:
        """
        Groups packages into the fewest ordered layers such that each
        package's prerequisites are all in strictly earlier layers.

        :param packages: Packages to install.
        :return: Layers in install order; names within a layer keep resolution order.
        """
        depth: Dict[str, int] = {}
        order = self.resolve_order(packages)
        for name in order:
            deps = self.prerequisites.get(name, ())
            depth[name] = 1 + max((depth[d] for d in deps), default=-1)
        layers: List[List[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for name in order:
            layers[depth[name]].append(name)
        return layers
