"""Wiring: builds the service graph once per application."""

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from listpilot.services.agent import Agent
from listpilot.services.broadcast import BroadcastDispatcher, ConnectionHub, RealtimeTransport
from listpilot.services.commands import CommandRouter
from listpilot.services.conversation_state import ConversationStateManager
from listpilot.services.conversations import ConversationService
from listpilot.services.lists import ListService
from listpilot.services.llm.base import BaseLLMProvider
from listpilot.services.mentions import MentionParser
from listpilot.services.orchestrator import ConversationOrchestrator
from listpilot.services.planning import ComplexityAnalyzer, StructureEnrichmentEngine
from listpilot.services.resolver import ReferenceResolver
from listpilot.services.search import SearchService
from listpilot.services.security import ModerationClassifier, SecurityGateway
from listpilot.services.tools.list_tools import ListToolkit
from listpilot.services.tools.registry import ToolExecutor, ToolRegistry, create_default_registry
from listpilot.services.worker import TurnQueue


@dataclass
class Services:
    engine: Engine
    transport: RealtimeTransport
    dispatcher: BroadcastDispatcher
    lists: ListService
    resolver: ReferenceResolver
    conversations: ConversationService
    state: ConversationStateManager
    gateway: SecurityGateway
    registry: ToolRegistry
    executor: ToolExecutor
    agent: Agent
    router: CommandRouter
    queue: TurnQueue
    orchestrator: ConversationOrchestrator


def build_services(
    engine: Engine,
    provider: BaseLLMProvider,
    classifier: ModerationClassifier,
    transport: RealtimeTransport | None = None,
) -> Services:
    transport = transport or ConnectionHub()
    dispatcher = BroadcastDispatcher(transport)
    lists = ListService(engine)
    resolver = ReferenceResolver(engine)
    conversations = ConversationService(engine)
    state = ConversationStateManager(engine)
    gateway = SecurityGateway(engine, classifier)

    kit = ListToolkit(
        lists=lists,
        resolver=resolver,
        dispatcher=dispatcher,
        analyzer=ComplexityAnalyzer(),
        enrichment=StructureEnrichmentEngine(),
    )
    registry = create_default_registry(kit)
    agent = Agent(provider, registry)
    router = CommandRouter(conversations, lists, SearchService(engine))
    queue = TurnQueue()

    orchestrator = ConversationOrchestrator(
        conversations=conversations,
        gateway=gateway,
        mentions=MentionParser(engine, resolver),
        router=router,
        queue=queue,
        agent=agent,
        state=state,
        dispatcher=dispatcher,
        lists=lists,
    )
    return Services(
        engine=engine,
        transport=transport,
        dispatcher=dispatcher,
        lists=lists,
        resolver=resolver,
        conversations=conversations,
        state=state,
        gateway=gateway,
        registry=registry,
        executor=agent.executor,
        agent=agent,
        router=router,
        queue=queue,
        orchestrator=orchestrator,
    )
