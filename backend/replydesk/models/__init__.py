from .conversation import Conversation, ConversationStatus, Message, MessageDirection
from .knowledge import Document, DocumentChunk, FaqEntry
from .product import Product
