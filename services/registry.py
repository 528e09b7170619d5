"""
Service Registry - Central management of application services
Implements dependency injection and lazy loading patterns
"""
from typing import Dict, Any, Callable, Optional, List
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # Single instance per application
    TRANSIENT = "transient"  # New instance on every get()


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(
        self,
        name: str,
        factory: Optional[Callable] = None,
        instance: Optional[Any] = None,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None,
    ):
        self.name = name
        self.factory = factory
        self.instance = instance
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.lock = threading.RLock()


class ServiceRegistry:
    """
    Centralized registry for all application services.

    Factories receive their declared dependencies as keyword arguments,
    resolved through the registry on first use.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register(self, name: str, service: Any) -> None:
        """
        Register a service instance directly.

        Args:
            name: Service identifier
            service: Service instance
        """
        with self._lock:
            self._descriptors[name] = ServiceDescriptor(name=name, instance=service)

    def register_factory(
        self,
        name: str,
        factory: Callable,
        lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
        dependencies: Optional[List[str]] = None,
    ) -> None:
        """
        Register a factory function for lazy service instantiation.

        Args:
            name: Service identifier
            factory: Callable that returns a service instance
            lifecycle: Service lifecycle type
            dependencies: Services this factory depends on
        """
        descriptor = ServiceDescriptor(
            name=name,
            factory=factory,
            lifecycle=lifecycle,
            dependencies=dependencies,
        )
        with self._lock:
            self._descriptors[name] = descriptor

    def get(self, name: str) -> Any:
        """
        Get a service by name. Lazy loads if a factory is registered.

        Raises:
            ValueError: If service is not registered
            RuntimeError: If circular dependency detected
        """
        if name not in self._descriptors:
            raise ValueError(f"Service '{name}' is not registered")

        descriptor = self._descriptors[name]

        if descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._create_instance(descriptor)

        if descriptor.instance is not None:
            return descriptor.instance

        with descriptor.lock:
            # Double-check pattern
            if descriptor.instance is None:
                descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        if descriptor.factory is None:
            raise ValueError(f"No factory registered for '{descriptor.name}'")

        if not hasattr(self._thread_local, 'initialization_stack'):
            self._thread_local.initialization_stack = []
        stack = self._thread_local.initialization_stack

        if descriptor.name in stack:
            cycle = " -> ".join(stack + [descriptor.name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()

    def has(self, name: str) -> bool:
        """Check if a service is registered"""
        return name in self._descriptors

    def reset_service(self, name: str) -> None:
        """Force re-instantiation of a service on next get"""
        descriptor = self._descriptors.get(name)
        if descriptor is not None and descriptor.factory is not None:
            with descriptor.lock:
                descriptor.instance = None

    def list_services(self) -> List[str]:
        return sorted(self._descriptors.keys())

    def validate_dependencies(self) -> List[str]:
        """Return a list of missing dependency errors (empty when wiring is complete)"""
        errors = []
        for name, descriptor in self._descriptors.items():
            for dep in descriptor.dependencies:
                if dep not in self._descriptors:
                    errors.append(f"Service '{name}' depends on unregistered service '{dep}'")
        return errors
