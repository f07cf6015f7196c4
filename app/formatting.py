"""
Fixed reply templates sent to WhatsApp users.

Prices are rendered in Brazilian format (two decimals, comma separator).
"""

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple, Union

from app.models import Product


Number = Union[Decimal, float, int]

_PRICE_RE = re.compile(r"R\$ (\d+,\d{2})")
_QUANTITY_RE = re.compile(r"(\d+) unidades")


def format_price(value: Number) -> str:
    """189.9 -> '189,90'"""
    amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"{amount:.2f}".replace(".", ",")


def parse_price(text: str) -> Decimal:
    """'189,90' -> Decimal('189.90')"""
    return Decimal(text.strip().replace(",", "."))


def format_product_found(product: Product) -> str:
    """Reply for a catalog hit."""
    description = f"📝 {product.descricao}" if product.descricao else ""
    return (
        "🛠️ *Produto disponível!*\n"
        "\n"
        f"📦 *{product.nome}*\n"
        f"📱 *Compatível com:* {product.modelo_aparelho}\n"
        f"💵 *Preço:* R$ {format_price(product.preco)}\n"
        f"✅ *Em estoque:* {product.quantidade} unidades\n"
        f"{description}\n"
        "\n"
        "Deseja agendar o reparo? 😊"
    )


def parse_product_found(text: str) -> Optional[Tuple[Decimal, int]]:
    """Recover (price, quantity) from a product-found reply, or None."""
    price = _PRICE_RE.search(text)
    quantity = _QUANTITY_RE.search(text)
    if not price or not quantity:
        return None
    return parse_price(price.group(1)), int(quantity.group(1))


def format_not_found(ai_name: str) -> str:
    return (
        f"Olá! Sou o *{ai_name}* 👋\n"
        "\n"
        "Não encontrei o produto específico que você mencionou em nosso estoque atual.\n"
        "\n"
        "Para te ajudar melhor, você poderia me informar:\n"
        "🔸 Modelo completo do aparelho\n"
        "🔸 Qual peça precisa (tela, bateria, câmera, etc.)\n"
        "\n"
        "Assim posso verificar se temos algo compatível! 😊"
    )


def format_error(ai_name: str) -> str:
    return (
        f"Olá! Sou o *{ai_name}* 👋\n"
        "\n"
        "Desculpe, estou com dificuldades técnicas no momento.\n"
        "\n"
        "Por favor, tente novamente em alguns minutos ou entre em contato diretamente conosco.\n"
        "\n"
        "Obrigado pela compreensão! 🙏"
    )
