# /convoflow/config/scenarios.py

# Default automation scenarios registered for the default company on startup
# when `seed_default_scenarios` is enabled. Stored scenarios with the same id
# take precedence. The main menu routes into the other scenarios, so it must be
# registered after them.

from typing import Any, Dict, List

DEFAULT_SCENARIOS: List[Dict[str, Any]] = [
    {
        "id": "SCENARIO001",
        "name": "Order status inquiry",
        "description": "Answers order status questions with the customer's latest orders",
        "priority": "high",
        "triggers": {
            "keywords": ["order", "my order", "order status", "where is my order", "track"],
            "intent": "order_inquiry",
        },
        "conditions": {
            "working_hours_only": True,
            "requires_customer_history": True,
            "max_daily_uses_per_customer": 10,
        },
        "steps": [
            {"id": "step1", "type": "message", "content": "Hi! I'll help you track your order 📦"},
            {"id": "step2", "type": "action", "action": "fetch_customer_orders", "params": {}},
            {
                "id": "step3",
                "type": "condition",
                "predicate": "has_recent_orders",
                "true_step": "step4",
                "false_step": "step6",
            },
            {
                "id": "step4",
                "type": "message",
                "content": "Here are your latest orders:\n{{recent_orders}}",
                "delay_ms": 1000,
            },
            {
                "id": "step5",
                "type": "message",
                "content": "Would you like more details about any of these orders?",
                "delay_ms": 500,
                "options": ["Yes", "No", "Talk to an agent"],
                "next_step": None,
            },
            {
                "id": "step6",
                "type": "message",
                "content": "You don't have any recent orders. Would you like to browse our products?",
                "delay_ms": 1000,
                "options": ["Yes", "No"],
            },
        ],
        "fallback": {
            "escalate_to_human": True,
            "message": "I'm transferring you to one of our team members for help.",
        },
    },
    {
        "id": "SCENARIO002",
        "name": "Product support",
        "description": "Helps the customer pick a product category and shows matching products",
        "priority": "medium",
        "triggers": {
            "keywords": ["product", "specs", "price", "available", "in stock"],
            "intent": "product_inquiry",
        },
        "conditions": {"max_daily_uses_per_customer": 20},
        "steps": [
            {"id": "step1", "type": "message", "content": "Hi! I'll help you find the right product 🛍️"},
            {
                "id": "step2",
                "type": "question",
                "content": "What kind of product are you looking for?",
                "options": ["Electronics", "Fashion", "Home & Garden", "Books", "Other"],
                "bind_to": "product_category",
            },
            {
                "id": "step3",
                "type": "action",
                "action": "search_products",
                "params": {"category": "{{product_category}}", "limit": 5},
            },
            {
                "id": "step4",
                "type": "message",
                "content": "Here are our top picks in {{product_category}}:\n{{product_results}}",
                "delay_ms": 1500,
            },
            {
                "id": "step5",
                "type": "question",
                "content": "Would you like more information about any of these products?",
                "options": ["Yes", "No", "Another category"],
                "bind_to": "next_action",
            },
        ],
        "fallback": {
            "escalate_to_human": False,
            "message": "You can browse our website or chat with one of our team members.",
        },
    },
    {
        "id": "SCENARIO003",
        "name": "Complaints and issues",
        "description": "Records a complaint ticket and hands the customer to customer service",
        "priority": "high",
        "triggers": {
            "keywords": ["complaint", "problem", "not happy", "terrible", "wrong"],
            "intent": "complaint",
            "sentiment": "negative",
        },
        "conditions": {
            "working_hours_only": True,
            "requires_customer_history": True,
            "max_daily_uses_per_customer": 5,
        },
        "steps": [
            {"id": "step1", "type": "message", "content": "I'm sorry for the trouble. Let me help you sort this out right away 🙏"},
            {
                "id": "step2",
                "type": "question",
                "content": "What kind of problem are you facing?",
                "options": ["Product issue", "Delivery issue", "Payment issue", "Other"],
                "bind_to": "problem_type",
            },
            {
                "id": "step3",
                "type": "message",
                "content": "Thank you. I'm logging your complaint and passing it to a specialist.",
                "delay_ms": 1000,
            },
            {
                "id": "step4",
                "type": "action",
                "action": "create_complaint_ticket",
                "params": {"type": "{{problem_type}}", "priority": "high"},
            },
            {
                "id": "step5",
                "type": "escalate",
                "department": "customer_service",
                "priority": "urgent",
                "message": "You've been transferred to our customer service team for immediate help. Ticket: {{ticket_id}}",
            },
        ],
        "fallback": {
            "escalate_to_human": True,
            "message": "I'm transferring you straight to our customer service manager.",
        },
    },
    {
        "id": "SCENARIO004",
        "name": "Main menu",
        "description": "Greets the customer and routes them to the right scenario or team",
        "priority": "low",
        "triggers": {"intent": "greeting"},
        "steps": [
            {"id": "step1", "type": "message", "content": "Hi! How can I help you today?"},
            {
                "id": "step2",
                "type": "route",
                "content": "What do you need help with?",
                "options": {
                    "Product information": "SCENARIO002",
                    "Order status": "SCENARIO001",
                    "Technical support": "escalate_technical",
                    "Other": "escalate_general",
                },
            },
        ],
        "fallback": {
            "escalate_to_human": True,
            "message": "I didn't catch that, so I'm connecting you with a team member.",
        },
    },
]
