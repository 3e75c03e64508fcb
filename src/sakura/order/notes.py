"""Staff and customer notes on an order. Notes are appended, never edited."""

from protean import handle
from protean.fields import Boolean, Identifier, String, Text
from protean.utils.globals import current_domain

from sakura.domain import sakura
from sakura.order.order import Order
from sakura.shared.locking import hold, order_key
from sakura.shared.lookup import load


@sakura.command(part_of="Order")
class AddOrderNote:
    order_id = Identifier(required=True)
    body = Text(required=True)
    author = String(required=True, max_length=100)
    is_customer_visible = Boolean(default=False)


@sakura.command_handler(part_of=Order)
class OrderNotesHandler:
    @handle(AddOrderNote)
    def add_note(self, command):
        order = load(Order, command.order_id)
        note_id = order.add_note(command.body, command.author, command.is_customer_visible)
        current_domain.repository_for(Order).add(order)
        return note_id


def add_order_note(order_id: str, body: str, author: str, is_customer_visible: bool = False) -> str:
    with hold(order_key(order_id)):
        return current_domain.process(
            AddOrderNote(order_id=order_id, body=body, author=author, is_customer_visible=is_customer_visible),
            asynchronous=False,
        )
